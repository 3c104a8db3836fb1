"""LFT genesis distribution tooling."""

__version__ = "0.3.0"
