"""
Minimal setup.py for the rmm configure pass

Runtime Requirements:
- git (to fetch third-party sources)
- CUDA toolkit (nvcc) on the machine that configures the library

Usage:
- pip install -e .[dev]
- rmm-build configure --source-dir /path/to/rmm -D LOGGING_LEVEL=INFO
- Set RMM_<OPTION>=VALUE in the environment to supply options without -D
"""

from pathlib import Path

from setuptools import find_packages, setup

# Read README for long description
readme_path = Path("README.md")
long_description = ""
if readme_path.exists():
    with open(readme_path, "r", encoding="utf-8") as f:
        long_description = f.read()

setup(
    name="rmm-build",
    version="0.16.0",
    description="Declarative build configuration and pinned dependency fetching for the rmm shared library",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["rmm_build", "rmm_build.*"]),
    package_data={
        "rmm_build": [
            "config/*.yaml",
        ]
    },
    include_package_data=True,
    entry_points={
        "console_scripts": [
            "rmm-build=rmm_build.main:main",
        ],
    },
    zip_safe=False,
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
        "dev": [
            "pytest",
            "pytest-cov",
            "black",
            "flake8",
            "mypy",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
