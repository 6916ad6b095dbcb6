"""
Exceptions raised by the detection pipeline.

Every fatal condition is eventually converted into a structured failure
response by the pipeline; these classes let each stage signal which kind
of failure happened.
"""


class DetectionError(Exception):
    """Base exception for detection pipeline errors."""
    pass


class InvalidRequestError(DetectionError):
    """Malformed request: too few submissions, duplicates, missing fields."""
    pass


class WorkspaceError(DetectionError):
    """Session workspace could not be allocated."""
    pass


class StagingError(DetectionError):
    """A submission could not be staged (bad URL, clone failure)."""
    pass


class EngineError(DetectionError):
    """The similarity engine failed or produced no result."""
    pass


class ExtractionSecurityError(DetectionError):
    """An archive entry tried to escape the extraction directory."""
    pass
