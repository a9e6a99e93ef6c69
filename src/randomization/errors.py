"""
Error taxonomy for the randomization engine.

Validation and state errors are expected outcomes of a request and are
reported back to the caller. Configuration errors surface when a trial is
initialized. Internal invariant errors always indicate a bug.
"""

from typing import Any, Dict


class RandomizationError(Exception):
    """Base class for every error raised by the engine."""
    code = "RandomizationError"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message, "code": self.code}


class ValidationError(RandomizationError, ValueError):
    """Malformed patient id, stratum or outcome."""
    code = "ValidationError"


class StateError(RandomizationError):
    """Request is well formed but conflicts with the ledger."""
    code = "StateError"


class DuplicateIdError(StateError):
    code = "DuplicateId"


class UnknownIdError(StateError):
    code = "UnknownId"


class InsufficientDataError(StateError):
    """Not enough enrolled patients or outcomes for an analysis."""
    code = "InsufficientData"


class ConfigurationError(RandomizationError, ValueError):
    code = "ConfigurationError"


class InternalInvariantError(RandomizationError, RuntimeError):
    code = "InternalInvariantError"
