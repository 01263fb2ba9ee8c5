"""fr_db: image/face index maintenance for a face-recognition library."""

__version__ = "0.1.0"
