"""Setup configuration for gwascan package"""

from setuptools import setup, find_packages

setup(
    name="gwascan",
    version="0.1.0",
    author="gwascan Development Team",
    description="Score-screened genome-wide association scans with linear, logistic and Poisson regression",
    long_description=open("README.md").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["gwascan", "gwascan.*"]),
    install_requires=[
        "numpy>=1.19.0",
        "scipy>=1.6.0",
        "pandas>=1.2.0,<3",
        "matplotlib>=3.3.0",
        "seaborn>=0.11.0",
        "tqdm>=4.60.0",
        "numba>=0.50.0",
    ],
    extras_require={
        # Reference GLM fits used by the parity tests
        "test": [
            "pytest>=7.0",
            "statsmodels>=0.12.0",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
    ],
)
