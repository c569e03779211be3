"""
Exceptions raised by the statistics stores.
"""


class StatsError(Exception):
    """Base class for statistics tracker errors."""


class StorageError(StatsError):
    """Backend I/O or schema failure (locked file, full disk, closed store)."""


class InvalidKeyError(StatsError, ValueError):
    """Malformed endpoint key input, e.g. an empty HTTP method."""
