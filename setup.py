"""
setup.py for installing the stochprog Python package.

Pure Python; the LP backend is the HiGHS solver shipped with SciPy:
    pip install -e .

With the test dependencies:
    pip install -e ".[test]"
"""

from setuptools import find_packages, setup

setup(
    name="stochprog",
    version="0.1.0",
    description="Two-stage stochastic linear programming with L-shaped decomposition",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.20",
        "scipy>=1.9",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
            "hypothesis>=6.0",
        ],
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
            "hypothesis>=6.0",
            "black>=23.0",
            "ruff>=0.1.0",
            "mypy>=1.0",
        ],
    },
)
