"""
Run Pipeline Service

The narrow interface the host calls for every inbound chat message:

    handle(message) -> ServiceResponse

RESPONSIBILITIES:
1. Receive the message (no preprocessing)
2. Slot filling: intent, clarifying question, or error
3. Dispatch the intent, one trigger per target
4. Compose and send the reply to the requester
5. Send the release announcement (best-effort)
6. Return a structured response (everything for debugging)
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pipebot.models.message import ChatMessage
from pipebot.services.conversation_coordinator import ResultKind, SlotFillingCoordinator
from pipebot.services.dispatch_engine import DispatchEngine, Outcome
from pipebot.services.notification_composer import Notifier, compose_announcement, compose_reply


# =============================================================================
# LOGGING
# =============================================================================

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "Something went wrong while reading your message. Please try again."


# =============================================================================
# STAGES
# =============================================================================

class ServiceStage:
    """
    Explicit stage names for tracking where handling stopped.
    """
    RECEIVED = "received"
    REJECTED = "rejected"
    CLARIFICATION_REQUESTED = "clarification_requested"
    INTENT_BUILT = "intent_built"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"


# =============================================================================
# RESPONSE DATA CLASS
# =============================================================================

@dataclass
class ServiceResponse:
    """
    Complete response for one message.

    `success` means the message was handled; individual targets may still
    have failed (see outcomes).
    """
    # Input
    channel: str
    text: str

    # Handling state
    success: bool
    stage: str
    duration_ms: int = 0

    # Step outputs (None if step wasn't reached)
    reply: str = ""
    intent: Optional[Dict[str, Any]] = None
    missing_slots: Optional[List[str]] = None
    outcomes: List[Outcome] = field(default_factory=list)
    reply_delivered: bool = False
    announcement: Optional[str] = None
    announcement_delivered: bool = False

    # Error (None if success)
    error: Optional[Dict[str, Any]] = None

    # Metadata
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "channel": self.channel,
            "text": self.text,
            "success": self.success,
            "stage": self.stage,
            "duration_ms": self.duration_ms,
            "reply": self.reply,
            "intent": self.intent,
            "missing_slots": self.missing_slots,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "reply_delivered": self.reply_delivered,
            "announcement": self.announcement,
            "announcement_delivered": self.announcement_delivered,
            "error": self.error,
            "request_id": self.request_id,
        }


# =============================================================================
# SERVICE
# =============================================================================

class RunPipelineService:
    """
    Host-facing entry point for the run-pipeline event.

    Usage:
        service = RunPipelineService(coordinator, engine, Notifier(chat_client))
        response = service.handle(ChatMessage(channel="C0123", text="start deploy repository api"))
    """

    def __init__(self, coordinator: SlotFillingCoordinator, engine: DispatchEngine, notifier: Notifier):
        self.coordinator = coordinator
        self.engine = engine
        self.notifier = notifier

    def handle(self, message: ChatMessage) -> ServiceResponse:
        start_time = time.monotonic()
        response = ServiceResponse(
            channel=message.channel,
            text=message.text,
            success=False,
            stage=ServiceStage.RECEIVED,
        )
        logger.info(f"Message received in {message.channel}: '{message.text[:100]}'")

        # ---------------------------------------------------------------------
        # STEP 1: Slot filling
        # ---------------------------------------------------------------------
        try:
            result = self.coordinator.handle_message(message.channel, message.text)
        except Exception as e:
            logger.exception(f"Slot filling failed for {message.channel}")
            response.stage = ServiceStage.REJECTED
            response.error = {"error_type": e.__class__.__name__, "message": str(e)}
            return self._reply(response, message, UNEXPECTED_ERROR_MESSAGE, start_time)

        if result.kind == ResultKind.ASK:
            response.success = True
            response.stage = ServiceStage.CLARIFICATION_REQUESTED
            response.missing_slots = result.missing_slots
            return self._reply(response, message, result.reply, start_time)

        if result.kind == ResultKind.ERROR:
            response.stage = ServiceStage.REJECTED
            response.error = result.error
            return self._reply(response, message, result.reply, start_time)

        intent = result.intent
        response.intent = intent.model_dump()
        response.stage = ServiceStage.INTENT_BUILT

        # ---------------------------------------------------------------------
        # STEP 2: Dispatch
        # ---------------------------------------------------------------------
        response.outcomes = self.engine.dispatch(intent)
        response.stage = ServiceStage.DISPATCHED

        # ---------------------------------------------------------------------
        # STEP 3: Reply and announcement
        # ---------------------------------------------------------------------
        response.success = True
        response = self._reply(response, message, compose_reply(intent, response.outcomes), start_time)

        response.announcement = compose_announcement(message.sender, intent, response.outcomes)
        response.announcement_delivered = self.notifier.announce(response.announcement)

        response.stage = ServiceStage.COMPLETED
        response.duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(f"Message in {message.channel} handled in {response.duration_ms}ms")
        return response

    def _reply(self, response: ServiceResponse, message: ChatMessage, text: str, start_time: float) -> ServiceResponse:
        response.reply = text
        response.reply_delivered = self.notifier.send_reply(message.channel, text)
        response.duration_ms = int((time.monotonic() - start_time) * 1000)
        return response

    def shutdown(self) -> None:
        self.engine.shutdown()
