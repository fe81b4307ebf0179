from setuptools import setup, find_packages

setup(
    name="uasf",
    version="1.0.0",
    description="UASF: Universal Attack Simulation Framework for validating WAF/WAAP controls",
    author="Red Team Engineering",
    packages=find_packages(include=["uasf", "uasf.*"]),
    install_requires=[
        "requests",
        "pyyaml",
        "colorama",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "uasf=uasf.cli:entrypoint",
        ],
    },
    python_requires=">=3.8",
)
