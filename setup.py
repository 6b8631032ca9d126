#!/usr/bin/env python3
"""
Setup script for the DeepBot API client
"""

from setuptools import setup, find_packages

setup(
    name="deepbot-api",
    version="1.1.0",
    description="Client library for the DeepBot websocket API",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "websockets>=15.0",
        "click>=8.1.7",
        "typer>=0.12.3",
        "rich>=13.9.2",
        "tqdm>=4.66.5",
        "PyYAML>=6.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.4.2",
            "pytest-asyncio>=1.2.0",
        ],
    },
    python_requires=">=3.11",
    entry_points={
        'console_scripts': [
            'deepbot=deepbot.deepbot_cli:main',
            'deepbot-mock=server.server:main',
        ],
    },
)
