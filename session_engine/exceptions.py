# session_engine/exceptions.py
"""
Error taxonomy for the session engine.

Only InvalidEventBatchError ever escapes a run. The other errors are raised by
collaborators and resolved inside the engine into degraded but valid output.
"""


class SessionEngineError(Exception):
    """Base class for all session engine errors."""


class InvalidEventBatchError(SessionEngineError):
    """A batch is malformed or not sorted by timestamp; it is rejected as a whole."""


class CategoryStoreError(SessionEngineError):
    """The category store could not be read."""


class ClassificationError(SessionEngineError):
    """The AI classification collaborator failed or returned unusable output."""
