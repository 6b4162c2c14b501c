"""Border0 socket lifecycle supervisor for CI jobs."""

__version__ = "0.1.0"

__all__ = ["__version__"]
