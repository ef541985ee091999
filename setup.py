from setuptools import setup, find_packages
from sup_metrics._version import __version__

setup(
    name="sup-metrics",
    version=__version__,
    description="Periodically refreshed token & governance metrics for a token-voting ecosystem, served over HTTP.",
    author="SUP Metrics",
    license="MIT license",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "sanic",
        "sanic-ext",
        "web3>=7",
        "eth-utils",
        "python-dotenv",
        "pyyaml",
        "argh",
        "httpx",
        "backoff",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "sanic-testing",
        ],
    },
)
