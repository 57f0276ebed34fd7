"""Haven: session lifecycle and local persistence for the wellness companion."""

__version__ = "0.1.0"
