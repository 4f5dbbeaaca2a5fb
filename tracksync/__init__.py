"""tracksync - keeps a local audio catalog in sync with the filesystem."""

__version__ = "0.1.0"
