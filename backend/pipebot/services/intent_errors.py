"""
Intent Errors - Centralized failure taxonomy for chat command handling.

These are the errors that can stop a chat command before anything is
dispatched. Downstream (CI API, chat API) failures live with their
clients.

Purpose:
- Clean, structured logs
- Predictable user-facing replies
- Explicit error codes for monitoring

Each error has:
- ERROR_CODE: Unique identifier for logging/monitoring
- message: Human-readable description
- to_dict(): Structured output for API responses
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class IntentErrorCode(str, Enum):
    """
    Canonical error codes for command handling failures.
    """
    # Grammar errors
    MALFORMED_REFERENCE = "MALFORMED_REFERENCE"
    INVALID_PIPELINE_NAME = "INVALID_PIPELINE_NAME"

    # Conversation errors
    INCOMPLETE_INTENT = "INCOMPLETE_INTENT"
    CONVERSATION_MISMATCH = "CONVERSATION_MISMATCH"


class PipebotError(Exception):
    """
    Base class for all command handling errors.

    Every subclass resolves to a user-visible reply at the conversation
    boundary; none of them is fatal to the process.
    """

    ERROR_CODE: IntentErrorCode = None  # Override in subclasses

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize error.

        Args:
            message: Human-readable error message
            field: Slot or field that caused the error (e.g., "destination")
            value: The offending input
            metadata: Additional context for debugging
        """
        self.message = message
        self.field = field
        self.value = value
        self.metadata = metadata or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to structured dict for API responses.

        Returns:
            {
                "error_code": "MALFORMED_REFERENCE",
                "error_type": "MalformedReferenceError",
                "message": "...",
                "field": "destination",
                "value": "https://bitbucket.org/john/repo/pull-requests/abc",
                "metadata": {...}
            }
        """
        return {
            "error_code": self.ERROR_CODE.value if self.ERROR_CODE else "PIPEBOT_ERROR",
            "error_type": self.__class__.__name__,
            "message": self.message,
            "field": self.field,
            "value": self.value,
            "metadata": self.metadata
        }


# ============================================================================
# GRAMMAR ERRORS
# ============================================================================

class MalformedReferenceError(PipebotError):
    """
    ERROR_CODE: MALFORMED_REFERENCE

    Raised when a link carries the "pull-requests" path segment but the
    pull-request id cannot be parsed.

    Example:
        https://bitbucket.org/john/test-repo/pull-requests/test/testing-pr-flow
    """
    ERROR_CODE = IntentErrorCode.MALFORMED_REFERENCE

    def __init__(self, url: str, reason: str = "pull-request id must be numeric"):
        super().__init__(
            message=f"Could not parse the pull-request link '{url}': {reason}",
            field="destination",
            value=url,
        )


class InvalidPipelineNameError(PipebotError):
    """
    ERROR_CODE: INVALID_PIPELINE_NAME

    Raised when an answer to the pipeline question is not a valid
    pipeline identifier.
    """
    ERROR_CODE = IntentErrorCode.INVALID_PIPELINE_NAME

    def __init__(self, answer: str):
        super().__init__(
            message=(
                f"'{answer}' is not a pipeline name. Use lowercase letters, "
                "digits, hyphens and underscores only"
            ),
            field="pipeline",
            value=answer,
        )


# ============================================================================
# CONVERSATION ERRORS
# ============================================================================

class IncompleteIntentError(PipebotError):
    """
    ERROR_CODE: INCOMPLETE_INTENT

    Not a failure: signals that a clarifying question has to be asked.
    Raised by the validator, caught by the coordinator.
    """
    ERROR_CODE = IntentErrorCode.INCOMPLETE_INTENT

    def __init__(self, missing_slots: List[str], clarification_message: str = ""):
        self.missing_slots = missing_slots
        self.clarification_message = clarification_message
        super().__init__(
            message=f"Intent is missing: {', '.join(missing_slots)}",
            field=missing_slots[0] if missing_slots else None,
            metadata={"missing_slots": missing_slots},
        )


class ConversationMismatchError(PipebotError):
    """
    ERROR_CODE: CONVERSATION_MISMATCH

    Raised when the number of collected answers does not match the number
    of questions in the scenario. Answers are never silently dropped.
    """
    ERROR_CODE = IntentErrorCode.CONVERSATION_MISMATCH

    def __init__(self, channel: str, expected: int, received: int):
        super().__init__(
            message=(
                f"Expected {expected} answers in channel '{channel}', "
                f"received {received}"
            ),
            value=received,
            metadata={"channel": channel, "expected": expected, "received": received},
        )
