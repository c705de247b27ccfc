"""Image store: ingestion, resizing and retrieval of uploaded images."""

__version__ = "0.1.0"
