# SPDX-FileCopyrightText: 2025 ConnectMe contributors
# SPDX-License-Identifier: MIT

from setuptools import find_namespace_packages, setup

setup(
    name="connectme",
    version="0.1.0",
    description="ConnectMe room host for connectmeifucan.com (TV app and CLI)",
    author="ConnectMe contributors",
    license="MIT",
    packages=find_namespace_packages(
        include=["audit", "audit.*", "rooms", "rooms.*", "security", "security.*"]
    ),
    python_requires=">=3.9",
    install_requires=[
        "click<9.0,>=8.1",
        "cryptography>=38.0.4",
        "requests<3.0,>=2.32",
    ],
    extras_require={
        "gui": [
            "kivy>=2.3.0",
            "kivymd>=1.2.0,<2.0",
        ],
        "test": [
            "pytest>=8.0.0",
            "pytest-cov>=5.0.0",
            "pytest-timeout>=2.3.0",
            "hypothesis>=6.0.0",
        ],
        "dev": [
            "ruff>=0.2.0",
            "black>=23.1.0",
            "isort>=5.10.1",
            "mypy>=1.8.0",
            "bandit>=1.7.0",
            "pre-commit>=2.20.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "connectme=rooms.cli:main",
        ],
    },
)
