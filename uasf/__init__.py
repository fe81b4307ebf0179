"""UASF - Universal Attack Simulation Framework."""

FRAMEWORK_NAME = "UASF"
__version__ = "1.0.0"
