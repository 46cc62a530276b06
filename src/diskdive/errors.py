"""Exceptions raised by diskdive."""


class DiskDiveError(Exception):
    """Base class for diskdive errors."""


class ScanError(DiskDiveError):
    """The root of a scan could not be read."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class TrashError(DiskDiveError):
    """Moving a path to the trash failed."""


class TrashTimeoutError(TrashError):
    """The trash operation did not finish in time."""


class OpenError(DiskDiveError):
    """Opening or revealing a path failed."""
