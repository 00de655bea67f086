"""Dra. Clara: a virtual medical assistant backend."""

__version__ = "1.0.0"
