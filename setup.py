from setuptools import setup, find_packages

setup(
    name="calerr",
    version="0.1.0",
    description="Calibration errors (ECE, SKCE) and calibration tests for probabilistic models",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.23",
        "scipy>=1.9",
        "pandas>=1.5",
        "joblib>=1.2",
        "tqdm>=4.64",
    ],
    extras_require={
        "examples": ["scikit-learn>=1.1"],
        "dev": ["pytest>=7.0", "pytest-cov", "black", "ruff", "scikit-learn>=1.1"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
)
