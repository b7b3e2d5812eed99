"""
Notification Composer - Render dispatch outcomes as chat messages.

Two audiences:
- The requester: a short confirmation when everything worked, an
  itemized per-target report as soon as anything did not
- The release channel (optional): an announcement of what was started,
  by whom, on which branch

Delivery of the announcement is best-effort: its failure is logged and
never affects the reply to the requester.
"""

import logging
import os
from typing import List, Optional

from dotenv import load_dotenv

from pipebot.models.intent import Intent, PullRequestTarget
from pipebot.services.chat_client import ChatClient, ChatClientError
from pipebot.services.dispatch_engine import Outcome, OutcomeStatus

load_dotenv()

RELEASE_ANNOUNCEMENT_CHANNEL = os.getenv("RELEASE_ANNOUNCEMENT_CHANNEL", "")

logger = logging.getLogger(__name__)


# =============================================================================
# MESSAGE TEMPLATES
# =============================================================================

SINGLE_SUCCESS_TEMPLATE = "Done. Here the link to the build status report: {build_url}"
SINGLE_TRIGGER_FAILURE_TEMPLATE = (
    "I tried to run selected pipeline `{pipeline}` for branch `{branch}` and I failed. Reason: {detail}"
)
SINGLE_INFO_FAILURE_TEMPLATE = (
    "Failed to get the info from the API about selected pull-request. Reason: {detail}"
)
NOT_ATTEMPTED_TEXT = "not attempted, I am shutting down"


# =============================================================================
# RENDERING
# =============================================================================

def _target_label(outcome: Outcome) -> str:
    target = outcome.target
    if isinstance(target, PullRequestTarget):
        label = f"{target.workspace}/{target.repository_slug}#{target.id}"
        if target.title:
            label += f" ({target.title})"
        return label
    if outcome.workspace:
        return f"{outcome.workspace}/{target.name}"
    return target.name


def _format_outcome_line(outcome: Outcome) -> str:
    label = _target_label(outcome)
    if outcome.status == OutcomeStatus.SUCCESS:
        return f"• :white_check_mark: {label} on `{outcome.branch}`: {outcome.build_url}"
    if outcome.status == OutcomeStatus.NOT_ATTEMPTED:
        return f"• :double_vertical_bar: {label}: {NOT_ATTEMPTED_TEXT}"
    return f"• :x: {label}: failed. Reason: {outcome.error_detail}"


def _format_single_failure(intent: Intent, outcome: Outcome) -> str:
    if outcome.status == OutcomeStatus.NOT_ATTEMPTED:
        return f"I did not run pipeline `{intent.pipeline}` for {_target_label(outcome)}: {NOT_ATTEMPTED_TEXT}"
    if outcome.branch:
        return SINGLE_TRIGGER_FAILURE_TEMPLATE.format(
            pipeline=intent.pipeline,
            branch=outcome.branch,
            detail=outcome.error_detail,
        )
    return SINGLE_INFO_FAILURE_TEMPLATE.format(detail=outcome.error_detail)


def compose_reply(intent: Intent, outcomes: List[Outcome]) -> str:
    """
    Render the reply to the requester.

    - one target, success: the build link
    - one target, failure: the reason
    - several targets, all succeeded: a confirmation with every link
    - several targets, anything else: an itemized report
    """
    if len(outcomes) == 1:
        outcome = outcomes[0]
        if outcome.succeeded:
            return SINGLE_SUCCESS_TEMPLATE.format(build_url=outcome.build_url)
        return _format_single_failure(intent, outcome)

    succeeded = sum(1 for o in outcomes if o.succeeded)
    lines = [_format_outcome_line(o) for o in outcomes]

    if succeeded == len(outcomes):
        header = f"Done. Pipeline `{intent.pipeline}` started for all {len(outcomes)} targets:"
    else:
        header = (
            f"Pipeline `{intent.pipeline}` started for {succeeded} of {len(outcomes)} targets:"
        )
    return "\n".join([header, *lines])


def compose_announcement(sender: str, intent: Intent, outcomes: List[Outcome]) -> Optional[str]:
    """
    Render the release announcement, or None when nothing was started.
    """
    started = [o for o in outcomes if o.succeeded]
    if not started:
        return None

    requester = f"<@{sender}>" if sender else "Someone"
    lines = [f"{requester} started pipeline `{intent.pipeline}`:"]
    for outcome in started:
        lines.append(f"• {_target_label(outcome)} on branch `{outcome.branch}`: {outcome.build_url}")
    return "\n".join(lines)


# =============================================================================
# DELIVERY
# =============================================================================

class Notifier:
    """
    Sends composed messages through the chat transport.

    When no chat client is configured, nothing is sent and the reply is
    only returned to the HTTP caller.
    """

    def __init__(self, chat_client: Optional[ChatClient] = None, announcement_channel: Optional[str] = None):
        self.chat_client = chat_client
        self.announcement_channel = (
            announcement_channel if announcement_channel is not None else RELEASE_ANNOUNCEMENT_CHANNEL
        )

    def send_reply(self, channel: str, text: str) -> bool:
        """Send the reply to the requester. Returns whether it was delivered."""
        if self.chat_client is None:
            return False
        try:
            self.chat_client.send_message(channel, text, as_bot=True)
            return True
        except ChatClientError as e:
            logger.error(f"Failed to deliver reply to {channel}: {e}")
            return False

    def announce(self, text: Optional[str]) -> bool:
        """Best-effort release announcement. Never raises."""
        if not text or not self.announcement_channel or self.chat_client is None:
            return False
        try:
            self.chat_client.send_message(self.announcement_channel, text, as_bot=True)
            logger.info(f"Release announcement sent to {self.announcement_channel}")
            return True
        except ChatClientError as e:
            logger.warning(f"Release announcement to {self.announcement_channel} failed: {e}")
            return False
