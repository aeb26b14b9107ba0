"""
Site Memory exceptions

Only storage failures are modelled as exceptions. Everything else the
stores can reject (duplicates, unknown ids, malformed events) is signalled
through return values.
"""


class SiteMemoryError(Exception):
    """Base class for site memory errors"""


class StorageError(SiteMemoryError):
    """Raised by a storage backend when a read or write fails"""

    def __init__(self, message: str, key: str = ""):
        super().__init__(message)
        self.key = key
