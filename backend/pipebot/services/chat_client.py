"""
Chat Client - Outbound message transport (Slack Web API).

Sends replies and announcements with chat.postMessage through slack_sdk.
It is a TRANSPORT LAYER only - the text is composed elsewhere.
"""

import logging
import os
from typing import Any
from urllib.error import URLError

from dotenv import load_dotenv
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError, SlackClientError

load_dotenv()


# =============================================================================
# CONFIGURATION
# =============================================================================

SLACK_API_URL = os.getenv("SLACK_API_URL", "https://slack.com/api")
SLACK_BOT_TOKEN = os.getenv("SLACK_BOT_TOKEN", "")
REQUEST_TIMEOUT_SECONDS = int(os.getenv("CHAT_REQUEST_TIMEOUT", "10"))


logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class ChatClientError(Exception):
    """Base exception for chat transport errors."""
    pass


class ChatTimeoutError(ChatClientError):
    """Chat API request timed out."""
    pass


class ChatDeliveryError(ChatClientError):
    """Chat API rejected the message."""

    def __init__(self, message: str, status_code: int = 200, api_error: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.api_error = api_error


# =============================================================================
# CLIENT CLASS
# =============================================================================

class ChatClient:
    """
    Thin wrapper over slack_sdk's WebClient.

    Usage:
        client = ChatClient(token="xoxb-...")
        client.send_message("C0123", "Done.")
    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        timeout: int | None = None,
    ):
        self.token = token or SLACK_BOT_TOKEN
        self.base_url = (base_url or SLACK_API_URL).rstrip("/") + "/"
        self.timeout = timeout or REQUEST_TIMEOUT_SECONDS
        self._client = WebClient(token=self.token, base_url=self.base_url, timeout=self.timeout)

    def send_message(self, channel: str, text: str, as_bot: bool = True) -> dict[str, Any]:
        """
        Post a message to a channel.

        Args:
            channel: Channel or conversation ID
            text: Message text (Slack mrkdwn)
            as_bot: Post in the bot's own voice rather than as the authed user

        Raises:
            ChatTimeoutError: Request timed out
            ChatDeliveryError: Transport or API error
        """
        try:
            response = self._client.chat_postMessage(channel=channel, text=text, as_user=not as_bot)
        except SlackApiError as e:
            api_error = e.response.get("error", "unknown_error")
            status_code = getattr(e.response, "status_code", 200)
            raise ChatDeliveryError(
                f"Chat API rejected the message: {api_error}",
                status_code=status_code,
                api_error=api_error,
            ) from e
        except SlackClientError as e:
            raise ChatDeliveryError(f"Chat API client error: {e}") from e
        except TimeoutError as e:
            raise ChatTimeoutError(f"Chat API timed out after {self.timeout}s") from e
        except URLError as e:
            if isinstance(e.reason, TimeoutError):
                raise ChatTimeoutError(f"Chat API timed out after {self.timeout}s") from e
            raise ChatDeliveryError(f"Chat API connection error: {e.reason}") from e

        logger.debug(f"Message delivered to {channel}")
        return response.data
