"""Slideshow video composer."""

__version__ = "0.1.0"
