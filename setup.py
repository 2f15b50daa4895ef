"""Setup configuration for the Pairlink signaling relay and client."""

from setuptools import setup, find_packages

setup(
    name="pairlink",
    version="0.1.0",
    description="Two-party room relay and peer link client",
    author="Pairlink Team",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "websockets>=13.0",
        "redis>=5.0.1",
        "httpx>=0.25.0",
        "aiortc>=1.9.0",
        "textual>=0.47.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21.0",
            "fakeredis>=2.20.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "pairlink-relay=relay.main:main",
            "pairlink-client=client.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
