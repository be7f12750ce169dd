"""Single-profile proxy connection manager."""

__version__ = "0.1.0"
