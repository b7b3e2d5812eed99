import socket
from urllib.error import URLError

import pytest
from slack_sdk.errors import SlackApiError, SlackRequestError
from slack_sdk.web import SlackResponse

from pipebot.services.chat_client import ChatClient, ChatDeliveryError, ChatTimeoutError


def _slack_response(data, status_code=200):
    return SlackResponse(
        client=None,
        http_verb="POST",
        api_url="https://slack.test/api/chat.postMessage",
        req_args={},
        data=data,
        headers={},
        status_code=status_code,
    )


@pytest.fixture
def web_client(mocker):
    web_client_cls = mocker.patch("pipebot.services.chat_client.WebClient")
    return web_client_cls.return_value


def _client():
    return ChatClient(token="xoxb-test", base_url="https://slack.test/api")


def test_client_configuration(mocker):
    web_client_cls = mocker.patch("pipebot.services.chat_client.WebClient")

    ChatClient(token="xoxb-test", base_url="https://slack.test/api", timeout=3)

    web_client_cls.assert_called_once_with(
        token="xoxb-test", base_url="https://slack.test/api/", timeout=3
    )


def test_send_message(web_client):
    web_client.chat_postMessage.return_value = _slack_response({"ok": True, "ts": "1.0"})

    body = _client().send_message("C0123", "Done.")

    assert body == {"ok": True, "ts": "1.0"}
    web_client.chat_postMessage.assert_called_once_with(channel="C0123", text="Done.", as_user=False)


def test_send_message_as_user(web_client):
    web_client.chat_postMessage.return_value = _slack_response({"ok": True})

    _client().send_message("C0123", "Done.", as_bot=False)

    assert web_client.chat_postMessage.call_args.kwargs["as_user"] is True


def test_api_rejection(web_client):
    web_client.chat_postMessage.side_effect = SlackApiError(
        "The request to the Slack API failed.",
        _slack_response({"ok": False, "error": "channel_not_found"}),
    )

    with pytest.raises(ChatDeliveryError) as exc:
        _client().send_message("C0123", "Done.")

    assert exc.value.api_error == "channel_not_found"
    assert exc.value.status_code == 200


def test_http_error(web_client):
    web_client.chat_postMessage.side_effect = SlackApiError(
        "The request to the Slack API failed.",
        _slack_response({"ok": False, "error": "ratelimited"}, status_code=429),
    )

    with pytest.raises(ChatDeliveryError) as exc:
        _client().send_message("C0123", "Done.")

    assert exc.value.status_code == 429


def test_client_error(web_client):
    web_client.chat_postMessage.side_effect = SlackRequestError("invalid request")

    with pytest.raises(ChatDeliveryError):
        _client().send_message("C0123", "Done.")


def test_timeout(web_client):
    web_client.chat_postMessage.side_effect = socket.timeout("timed out")

    with pytest.raises(ChatTimeoutError):
        _client().send_message("C0123", "Done.")


def test_wrapped_timeout(web_client):
    web_client.chat_postMessage.side_effect = URLError(socket.timeout("timed out"))

    with pytest.raises(ChatTimeoutError):
        _client().send_message("C0123", "Done.")


def test_connection_error(web_client):
    web_client.chat_postMessage.side_effect = URLError("Name or service not known")

    with pytest.raises(ChatDeliveryError):
        _client().send_message("C0123", "Done.")
