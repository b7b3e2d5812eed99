"""
Intent Validator - Completeness gate between extraction and dispatch.

Ensures "an incomplete intent is never dispatched":
- A pipeline name must be known
- At least one pull-request or repository target must be known

An incomplete intent is not a failure: it raises IncompleteIntentError,
which the coordinator turns into a clarifying question.
"""

import logging
from typing import Optional

from pipebot.models.intent import Intent, Slot
from pipebot.services.intent_errors import IncompleteIntentError


logger = logging.getLogger(__name__)


CLARIFICATION_MESSAGES = {
    Slot.DESTINATION: (
        "Please define the pull-request or the repository, because I don't "
        "understand for which branch I need to run it."
    ),
    Slot.PIPELINE: "Could you please tell me which pipeline I should run?",
}


class IntentValidator:
    """
    Validates that an extracted intent is ready for dispatch.

    Usage:
        validator = IntentValidator()
        intent = validator.validate(extracted)  # raises IncompleteIntentError
    """

    def validate(self, intent: Intent) -> Intent:
        """
        Return the intent unchanged when it is complete.

        Raises:
            IncompleteIntentError: pipeline or targets are missing
        """
        missing = intent.missing_slots()
        if missing:
            logger.info(f"Intent incomplete, missing: {[slot.value for slot in missing]}")
            raise IncompleteIntentError(
                missing_slots=[slot.value for slot in missing],
                clarification_message=CLARIFICATION_MESSAGES[missing[0]],
            )
        return intent


def validate_intent(intent: Intent, validator: Optional[IntentValidator] = None) -> Intent:
    """Convenience wrapper around IntentValidator.validate()."""
    return (validator or IntentValidator()).validate(intent)
