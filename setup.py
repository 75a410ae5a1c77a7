"""Setup script for the PoolWatch package."""

from setuptools import setup, find_packages

# Read README with explicit UTF-8 encoding
with open("README.md", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="poolwatch",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "python-dotenv",
        "structlog",
        "pydantic>=2.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "aiosqlite>=0.19.0",  # SQLite async driver
        "matrix-nio",
        "pyyaml",
        "aiohttp",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "poolwatch=poolwatch.main:run",
        ],
    },
    python_requires=">=3.10",
    author="PoolWatch Team",
    description="Mining pool account monitoring with Matrix notifications",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications :: Chat",
        "Topic :: System :: Monitoring",
    ],
)
