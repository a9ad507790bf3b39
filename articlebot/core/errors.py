"""Failures raised inside the pipeline core."""


class ExtractionError(Exception):
    """Raised when no repair tier could turn text into the expected object."""

    def __init__(self, reason: str, raw_head_tail: str = ""):
        super().__init__(reason)
        self.reason = reason
        self.raw_head_tail = raw_head_tail


class NoUniqueTopicsError(Exception):
    """Every validated topic matched an already published title."""


class AssemblyError(Exception):
    """The drafting port never produced a usable draft."""
