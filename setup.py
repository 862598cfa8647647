"""Setup script for chflow."""

from setuptools import find_packages, setup

setup(
    name="chflow",
    version="0.1.0",
    description="Move data between ClickHouse and delimited flat files",
    author="chflow Team",
    packages=find_packages(include=["chflow", "chflow.*"]),
    install_requires=[
        "pandas>=2.0.0",  # Flat file parsing and serialization
        "pyarrow>=10.0.0",  # Fast CSV engine for large files
        "duckdb>=1.2.0",  # Embedded store for local files and tests
        "clickhouse-connect>=0.7.0",  # ClickHouse HTTP client
        "typer>=0.9.0",  # Modern CLI framework
        "rich>=13.0.0",  # CLI tables and panels
        "python-dotenv>=1.0.0",  # .env loading
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.1.0",
            "black>=22.1.0",
            "isort>=5.10.1",
            "flake8>=4.0.1",
            "mypy>=1.0.0",  # Type checking
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.1.0",
            "mock>=5.0.0",  # For mocking in tests
        ],
    },
    entry_points={
        "console_scripts": [
            "chflow=chflow.cli.main:cli",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
