"""
VGAP Turn Toolkit - Errors
Exceptions raised by the turn file, processor and checker code.
"""


class TurnError(Exception):
    """Base class for all toolkit errors."""


class FormatError(TurnError):
    """A file's byte layout cannot be trusted (bad pointer, bad counter)."""

    def __init__(self, filename, message):
        super().__init__(message)
        self.filename = filename

    def __str__(self):
        return f"{self.filename}: {self.args[0]}"


class FileTooShortError(FormatError):
    """A file ends before a structure it must contain."""

    def __init__(self, filename, message="File too short"):
        super().__init__(filename, message)


class UnitReferenceError(TurnError):
    """A turn command refers to a unit the caller does not accept."""

    def __init__(self, filename, message):
        super().__init__(message)
        self.filename = filename

    def __str__(self):
        return f"{self.filename}: {self.args[0]}"


class CheckAborted(TurnError):
    """The checker stopped because it cannot continue."""
