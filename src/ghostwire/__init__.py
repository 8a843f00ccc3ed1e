"""Ghostwire: streaming inline code completions for editors."""

__all__ = ["__version__"]

__version__ = "0.1.0"
