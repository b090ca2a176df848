"""Push/pull synchronisation of a local vault with Google Drive."""

__version__ = "0.1.0"
