"""
Conversation Coordinator - Slot filling for chat commands.

This is the CONTROLLER that owns the conversation lifecycle of a channel:

    Idle ──(incomplete command)──> AwaitingAnswer(0) ──> ... ──> AwaitingAnswer(n-1)
      ^                                                               │
      └──────────────(last answer: intent, or error + reset)──────────┘

1. Idle: extract the intent from the message itself. A complete intent
   is returned right away and no state is stored.
2. Incomplete: store AwaitingAnswer(0) and ask the first question.
3. AwaitingAnswer(k): record the answer and ask the next question.
4. Last answer: check the answer count, rebuild the intent from the
   answers, reset the conversation whatever the result.

Every outcome is a CoordinatorResult; this module never raises for
per-message problems.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pipebot.conversation.conversation_state import ConversationState, ScenarioKind
from pipebot.conversation.state_store import ConversationStore
from pipebot.models.intent import Intent, Slot
from pipebot.services.intent_errors import (
    ConversationMismatchError,
    IncompleteIntentError,
    MalformedReferenceError,
    PipebotError,
)
from pipebot.services.intent_extractor import extract_intent, extract_intent_from_answers
from pipebot.services.intent_validator import IntentValidator
from pipebot.services.scenario_catalog import ScenarioCatalog


# =============================================================================
# LOGGING
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# USER-FACING MESSAGES
# =============================================================================

EXTRACTION_FAILED_MESSAGE = "Failed to extract the data from your message"
REPEAT_REQUEST_MESSAGE = (
    "I lost track of our conversation. Please repeat your request from the beginning."
)
START_OVER_MESSAGE = "Please start over with a new request."


# =============================================================================
# RESULT TYPES
# =============================================================================

class ResultKind(str, Enum):
    INTENT = "intent"   # complete intent, ready for dispatch
    ASK = "ask"         # clarifying question sent, waiting for the answer
    ERROR = "error"     # command could not be understood, conversation reset


@dataclass(frozen=True)
class CoordinatorResult:
    """
    Result of handling one message.

    Exactly one of intent / prompt / error is set, matching kind.
    `reply` is the text to send back to the user (empty for INTENT).
    """
    kind: ResultKind
    intent: Optional[Intent] = None
    prompt: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    reply: str = ""
    missing_slots: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.kind == ResultKind.INTENT and self.intent is None:
            raise ValueError("Intent result must have intent")
        if self.kind == ResultKind.ASK and not self.prompt:
            raise ValueError("Ask result must have prompt")
        if self.kind == ResultKind.ERROR and self.error is None:
            raise ValueError("Error result must have error")


def _intent(intent: Intent) -> CoordinatorResult:
    return CoordinatorResult(kind=ResultKind.INTENT, intent=intent)


def _ask(prompt: str, missing_slots: Optional[List[str]] = None) -> CoordinatorResult:
    return CoordinatorResult(
        kind=ResultKind.ASK,
        prompt=prompt,
        reply=prompt,
        missing_slots=missing_slots or [],
    )


def _error(error: PipebotError, reply: str) -> CoordinatorResult:
    return CoordinatorResult(kind=ResultKind.ERROR, error=error.to_dict(), reply=reply)


# =============================================================================
# COORDINATOR
# =============================================================================

class SlotFillingCoordinator:
    """
    Decides, per message, whether to proceed, ask, or reset.

    Usage:
        coordinator = SlotFillingCoordinator(ConversationStore(), ScenarioCatalog())
        result = coordinator.handle_message("C0123", "start staging-deploy repository billing")
        if result.kind == ResultKind.INTENT:
            dispatch(result.intent)
        else:
            reply(result.reply)
    """

    def __init__(
        self,
        store: ConversationStore,
        catalog: ScenarioCatalog,
        validator: Optional[IntentValidator] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.validator = validator or IntentValidator()

    def handle_message(self, channel: str, text: str) -> CoordinatorResult:
        """
        Handle one message of a channel.

        Messages of the same channel are serialized by the store's
        per-channel lock.
        """
        with self.store.lock(channel):
            state = self.store.get(channel)
            if state is not None and state.scenario_version and state.scenario_version != self.catalog.version:
                # Answers were collected for a different question list
                logger.warning(
                    f"Dropping conversation for {channel} saved under scenario "
                    f"v{state.scenario_version} (current v{self.catalog.version})"
                )
                self.store.delete(channel)
                state = None
            if state is None or state.scenario_kind != ScenarioKind.AWAITING_INTENT:
                return self._handle_idle(channel, text)
            return self._handle_answer(state, text)

    def reset(self, channel: str) -> None:
        """Forget any conversation in progress for the channel."""
        with self.store.lock(channel):
            self.store.delete(channel)

    # -------------------------------------------------------------------------
    # IDLE: DIRECT EXTRACTION
    # -------------------------------------------------------------------------

    def _handle_idle(self, channel: str, text: str) -> CoordinatorResult:
        try:
            intent = extract_intent(text)
        except MalformedReferenceError as e:
            logger.warning(f"Extraction failed for {channel}: {e}")
            return _error(e, EXTRACTION_FAILED_MESSAGE)

        try:
            return _intent(self.validator.validate(intent))
        except IncompleteIntentError as e:
            state = ConversationState(
                channel=channel,
                pending_question_index=0,
                scenario_kind=ScenarioKind.AWAITING_INTENT,
                scenario_version=self.catalog.version,
            )
            self.store.save(state)
            first = self.catalog.get_question(0)
            logger.info(f"Started conversation for {channel}, missing: {e.missing_slots}")
            return _ask(first.prompt, e.missing_slots)

    # -------------------------------------------------------------------------
    # AWAITING ANSWER
    # -------------------------------------------------------------------------

    def _handle_answer(self, state: ConversationState, text: str) -> CoordinatorResult:
        channel = state.channel
        question_count = self.catalog.question_count()
        current = state.pending_question_index
        state.record_answer(text.strip())

        if current + 1 < question_count:
            self.store.save(state)
            next_question = self.catalog.get_question(current + 1)
            logger.info(f"Conversation {channel}: answer {current + 1}/{question_count} recorded")
            return _ask(next_question.prompt, [next_question.slot.value])

        # Last answer: the conversation ends here whatever happens next
        self.store.delete(channel)

        if len(state.collected_answers) != question_count:
            error = ConversationMismatchError(channel, question_count, len(state.collected_answers))
            logger.error(f"Conversation {channel} reset: {error}")
            return _error(error, REPEAT_REQUEST_MESSAGE)

        answers: Dict[Slot, List[str]] = {}
        for question, answer in zip(self.catalog.questions, state.collected_answers):
            answers.setdefault(question.slot, []).append(answer)

        try:
            intent = extract_intent_from_answers(answers)
        except PipebotError as e:
            logger.warning(f"Conversation {channel} answers could not be parsed: {e}")
            return _error(e, f"{EXTRACTION_FAILED_MESSAGE}. {START_OVER_MESSAGE}")

        try:
            validated = self.validator.validate(intent)
        except IncompleteIntentError as e:
            logger.warning(f"Conversation {channel} ended with an incomplete intent: {e}")
            return _error(e, f"{e.clarification_message} {START_OVER_MESSAGE}")

        logger.info(f"Conversation {channel} completed")
        return _intent(validated)
