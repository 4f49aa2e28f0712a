from __future__ import annotations

from fastapi import status


class WorkflowError(Exception):
    """Base class for failures surfaced to the agent as a status message."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(WorkflowError):
    status_code = status.HTTP_404_NOT_FOUND


class SubscriberNotFoundError(NotFoundError):
    pass


class AddressNotFoundError(NotFoundError):
    pass


class OrderNotFoundError(NotFoundError):
    pass


class WorkflowValidationError(WorkflowError):
    """A required selection is missing; no request was issued."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class UpstreamError(WorkflowError):
    status_code = status.HTTP_502_BAD_GATEWAY


class DispatchFailedError(UpstreamError):
    """The dispatch write failed; the workflow stays where it was."""


class NoActiveSessionError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "No active call session") -> None:
        super().__init__(message)
