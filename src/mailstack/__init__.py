"""
mailstack
Service orchestrator for a single-host mail stack
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
