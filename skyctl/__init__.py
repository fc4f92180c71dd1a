"""The sky command, a plugin store with marketplaces, and JSON builtin definition providers."""

__version__ = "0.1.0"

__all__ = ["__version__"]