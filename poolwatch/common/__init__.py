"""Shared types and errors used across PoolWatch components."""
