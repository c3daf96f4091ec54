"""Setup configuration for cloudtest."""

from setuptools import setup, find_packages

setup(
    name="cloudtest",
    version="0.1.0",
    description="Run Go and shell test executions against provider-managed clusters",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "pyyaml>=6.0",
        "click>=8.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
        ],
    },
    entry_points={
        "console_scripts": [
            "cloudtest=cloudtest.cli:main",
        ],
    },
)
