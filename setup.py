#!/usr/bin/env python3
"""
Setup script for the wsclient WebSocket client engine
"""

from setuptools import setup, find_namespace_packages

setup(
    name="wsclient",
    version="0.1.0",
    description="Proxy-aware WebSocket client with keepalive and automatic reconnection",
    packages=find_namespace_packages(include=["wsclient", "wsclient.*", "wscommon", "wscommon.*"]),
    install_requires=[
        "websockets==15.0.1",
        "typer==0.16.0",
        "rich==13.9.4",
        "aioconsole==0.8.1",
        "PyYAML==6.0.2",
    ],
    extras_require={
        "test": [
            "pytest==8.4.2",
            "pytest-asyncio==1.2.0",
            "trustme==1.2.1",
        ],
    },
    python_requires=">=3.11",
    entry_points={
        'console_scripts': [
            'wsclient=wsclient.cli:main',
        ],
    },
)
