"""
Marketplace Offers - offer lifecycle and payment settlement engine
"""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="marketplace-offers",
    version="0.1.0",
    author="Marketplace Engineering",
    author_email="engineering@marketplace.example",
    description="Offer lifecycle and Stripe payment settlement engine for a services marketplace",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Framework :: FastAPI",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.4",
            "httpx>=0.24",
        ],
    },
    entry_points={
        "console_scripts": [
            "marketplace-offers=core.cli:main",
        ],
    },
)
