"""Exception types shared by the logger components."""


class StorageError(Exception):
    """Log file could not be opened, read, written or inspected."""


class LogNotFoundError(StorageError):
    """The requested log file does not exist."""


class ChannelError(Exception):
    """The message channel to the companion failed or is not open."""
