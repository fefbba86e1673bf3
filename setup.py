"""Setup script for FlowGate Orchestrator."""

from pathlib import Path
from setuptools import setup, find_packages

this_directory = Path(__file__).parent

# Read version from version.py
version_file = this_directory / "flowgate" / "version.py"
version_dict = {}
with open(version_file) as f:
    exec(f.read(), version_dict)
version = version_dict["__version__"]

# Core requirements
install_requires = [
    # Core
    "pydantic>=2.0.0",
    "rich>=12.0.0",
    "typer>=0.7.0",
    "python-dotenv>=1.0.0",

    # HTTP and utilities
    "requests>=2.31.0",
    "xmltodict>=0.13.0",
    "psutil>=5.9.0",

    # API support
    "fastapi>=0.100.0",
    "uvicorn>=0.23.0",
]

# Development requirements
dev_requires = [
    "pytest>=7.0.0",
    "pytest-cov>=4.0.0",
    "pytest-mock>=3.10.0",
    "responses>=0.23.0",
    "httpx>=0.24.0",
    "black>=23.0.0",
    "isort>=5.12.0",
    "flake8>=6.0.0",
    "mypy>=1.0.0",
]

setup(
    name="flowgate-orchestrator",
    version=version,
    description="Analysis job orchestration for GenePattern and Galaxy compute backends",
    packages=find_packages(exclude=["tests", "tests.*", "docs", "docs.*"]),
    include_package_data=True,
    install_requires=install_requires,
    extras_require={
        "dev": dev_requires,
        "test": [
            "pytest>=7.0.0",
            "pytest-mock>=3.10.0",
            "responses>=0.23.0",
            "httpx>=0.24.0",
        ],
        "all": install_requires + dev_requires,
    },
    entry_points={
        "console_scripts": [
            "flowgate=flowgate.cli:app",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "Environment :: Console",
        "Framework :: FastAPI",
    ],
    keywords="flow-cytometry, genepattern, galaxy, workflow, job-orchestration",
)
