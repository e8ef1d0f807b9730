# src/infrastructure/generation/errors.py
from typing import Any, Optional


class GenerationError(Exception):
    """
    Base error of the orchestrator. status_code is mapped to the HTTP response by the api layer.
    """

    status_code: int = 500
    error: str = "GenerationError"

    def __init__(self, message: str = "", *, details: Optional[Any] = None) -> None:
        super().__init__(message or self.error)
        self.message = message or self.error
        self.details = details


class InvalidRequest(GenerationError):
    status_code = 400
    error = "InvalidRequest"


class Unauthorized(GenerationError):
    status_code = 401
    error = "Unauthorized"


class NotFound(GenerationError):
    status_code = 404
    error = "NotFound"


class CapacityExceeded(GenerationError):
    status_code = 429
    error = "CapacityExceeded"


class InvalidTransition(GenerationError):
    status_code = 409
    error = "InvalidTransition"


class AlreadyRunning(GenerationError):
    status_code = 409
    error = "AlreadyRunning"
