"""Setup script for bulkflow."""

from setuptools import find_packages, setup

setup(
    name="bulkflow",
    version="0.1.0",
    description="Set-based bulk insert, delete, update and merge through staging tables",
    author="bulkflow Team",
    packages=find_packages(include=["bulkflow", "bulkflow.*"]),
    install_requires=[
        "duckdb>=1.2.0",  # Embedded backend and Arrow registration
        "pandas>=2.0.0",  # Tabular buffers and COPY payloads
        "numpy>=1.24.0",  # Scalar normalization of buffer values
        "pyarrow>=10.0.0",  # Record batch cursors and Parquet input
        "sqlalchemy>=2.0.0",  # Connections and catalog reflection
        "typer>=0.12.0",  # CLI framework
        "rich>=13.0.0",  # CLI output
        "psycopg2-binary>=2.9.0",  # PostgreSQL COPY
        "pyyaml>=6.0",  # Profile handling
    ],
    package_data={
        "bulkflow": ["py.typed"],
    },
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.1.0",
            "black>=22.1.0",
            "isort>=5.10.1",
            "flake8>=4.0.1",
            "autoflake>=2.2.0",
            "pre-commit>=3.0.0",
            "mypy>=1.0.0",  # Type checking
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.1.0",
        ],
        "mssql": [
            "pyodbc>=5.0.0",  # SQL Server driver
        ],
    },
    entry_points={
        "console_scripts": [
            "bulkflow=bulkflow.cli.main:cli",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
