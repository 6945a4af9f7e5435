from __future__ import annotations

from pathlib import Path

from setuptools import find_packages, setup

# Read README for long description
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    # Package metadata
    name="inboxfaq",
    version="0.1.0",
    description="Turn recurring customer-support email questions into FAQ entries",
    long_description=long_description,
    long_description_content_type="text/markdown",
    # Package discovery
    packages=find_packages(include=["inboxfaq", "inboxfaq.*"]),
    package_data={"inboxfaq.llm.prompts": ["*.txt"]},
    # Dependencies
    install_requires=[
        "pydantic>=2.5.0",
        "numpy>=1.26.0",
        "psutil>=5.9.0",
        "tenacity>=8.2.0",
        "google-cloud-aiplatform>=1.38.0",
        "python-dotenv>=1.0.0",
    ],
    # Optional dependencies (for development)
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "black>=23.0.0",
            "mypy>=1.0.0",
            "ruff>=0.1.0",
        ],
    },
    # CLI commands
    entry_points={
        "console_scripts": [
            "inboxfaq=inboxfaq.cli:main",
        ],
    },
    # Python version requirement
    python_requires=">=3.11",
    # PyPI classifiers
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
    ],
)
