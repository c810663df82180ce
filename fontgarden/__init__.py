"""Font Garden: a font catalog with projects, preview images and pairing suggestions."""

__version__ = "1.0.0"
