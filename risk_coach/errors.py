"""Error model shared by the coach core and the HTTP boundary."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    RETRIEVAL = "retrieval"
    MODEL_INVOCATION = "model_invocation"
    STATE = "state"


_STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.RETRIEVAL: 500,
    ErrorKind.MODEL_INVOCATION: 500,
    ErrorKind.STATE: 500,
}


class CoachError(Exception):
    """Raised when a coach operation fails for any reason.

    The ``kind`` tells the boundary layer how to report the failure;
    only VALIDATION errors are safe to show to the caller verbatim.
    """

    def __init__(self, kind: ErrorKind, message: str):
        self.kind = kind
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]

    @property
    def is_internal(self) -> bool:
        return self.kind is not ErrorKind.VALIDATION
