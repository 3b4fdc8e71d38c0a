
from setuptools import setup


setup(
    name="cobalt",
    version="0.0.1",
    description="A library for sparse discrete factor graphs: exact inference and parameter estimation.",
    license="All rights reserved.",
    packages=["cobalt"],
    install_requires=[
        "matplotlib",
        "numpy",
        "opt-einsum",
        "pandas",
        "toml",
        "torch",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-cov",
        ],
    },

)
