#!/usr/bin/env python3
"""
Setup script for Calico Accountant
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="calico-accountant",
    version="1.0.0",
    author="Calico Accountant Developers",
    description="Prometheus exporter for per-workload Calico policy accept/drop packet counts",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["accountant", "accountant.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Monitoring",
        "Topic :: System :: Networking :: Firewalls",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.8",
    install_requires=requirements,
    extras_require={
        'test': [
            'pytest>=7.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'calico-accountant=accountant.accountant_daemon:main',
        ],
    },
    include_package_data=True,
)
