#!/usr/bin/env python3

from setuptools import setup, find_packages

setup(
    name="pycloader",
    version="0.1.0",
    description="Loader and disassembler for CPython 3.7-3.10 .pyc code objects",
    packages=find_packages(include=["common", "pyc", "pyc.*"]),
    package_data={
        "pyc.disasm": ["tables/*.yaml"],
    },
    python_requires=">=3.10",
    install_requires=[
        "json5",
        "PyYAML",
    ],
    extras_require={
        "dev": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "pycload=pyc.cli:main",
        ],
    },
)
