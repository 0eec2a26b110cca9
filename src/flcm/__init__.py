"""FLCM: a file-backed, four-stage content document pipeline."""

__version__ = "0.1.0"
