"""Checkmate Bridge - streams Checkmate browser test runs to model-driven clients"""

__version__ = "1.0.0"
