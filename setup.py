"""
Setup configuration for videoreach package.
"""

from setuptools import setup, find_packages

setup(
    name="videoreach",
    version="0.1.0",
    description="Personalized video outreach campaign processing engine",
    packages=find_packages(include=["videoreach", "videoreach.*"]),
    python_requires=">=3.10",
    install_requires=[
        "supabase>=2.0",
        "google-genai>=1.0",
        "pydantic>=2.0",
        "python-dotenv>=1.0",
        "tenacity>=8.0",
        "logfire>=0.40",
        "click>=8.0",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "videoreach=videoreach.cli.main:cli",
        ],
    },
)
