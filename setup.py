"""
encmatrix Setup Configuration
"""
from pathlib import Path

from setuptools import setup, find_packages

setup(
    name="encmatrix",
    version="1.0.0",
    packages=find_packages(include=["encmatrix", "encmatrix.*"]),
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.111.0",
        "uvicorn>=0.30.1",
        "pydantic>=2.7.4",
        "pydantic-settings>=2.3.0",
        "numpy>=1.26.4",
        "tenseal==0.3.16",
        "httpx>=0.27.0",
        "python-json-logger>=3.1.0",
        "prometheus-client>=0.20.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "encmatrix-evaluator=encmatrix.evaluator.service:main",
            "encmatrix-client=encmatrix.client.cli:main",
        ],
    },
    author="encmatrix Team",
    description="Integer matrix arithmetic on a remote evaluator under batched BFV encryption",
    long_description=open("README.md").read() if Path("README.md").exists() else "",
    long_description_content_type="text/markdown",
)
