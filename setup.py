"""
peerscout - Public peer discovery for mesh daemons
Find, ping and adopt the fastest public peers
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="peerscout",
    version="1.0.0",
    description="Discover, test and adopt public peers for a mesh networking daemon",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["peerscout", "peerscout.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Networking",
    ],
    python_requires=">=3.10",
    install_requires=[
        "aiohttp>=3.9.0",
        "aiohttp-socks>=0.8.0,<0.11",
        "click>=8.0.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "peerscout=peerscout.cli:main",
            "peerscout-update-peers=peerscout.merge.helper:main",
        ],
    },
)
