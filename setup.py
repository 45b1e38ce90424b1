"""
Setup script for envdata-ingest - Environmental data ingestion engine.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

setup(
    name="envdata-ingest",
    version="0.1.0",
    description="Scheduled ingestion and batch storage of environmental observation data",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["envdata_ingest", "envdata_ingest.*"]),
    python_requires=">=3.11",
    install_requires=[
        # Database driver
        "asyncpg>=0.29.0",

        # HTTP client
        "aiohttp>=3.9.0",

        # Async file I/O
        "aiofiles>=23.1.0",

        # Scheduling
        "APScheduler>=3.10.0,<4.0",

        # Data validation
        "pydantic>=2.5.0",

        # Monitoring and observability
        "prometheus-client>=0.19.0",

        # Utilities
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Atmospheric Science",
    ],
    include_package_data=True,
    zip_safe=False,
)
