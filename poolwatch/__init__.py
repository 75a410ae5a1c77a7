"""
PoolWatch: Mining Pool to Matrix Notification Relay
A Python package that watches pool accounts and announces changes in chat rooms.
"""

__version__ = "0.1.0"
__author__ = "Adedapo Ajuwon"
