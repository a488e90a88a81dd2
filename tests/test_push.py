"""Tests for the Expo push transport and token helpers."""

import asyncio
from unittest.mock import Mock

import pytest
import requests

from tour_companion.exceptions import PushTransportError
from tour_companion.notifications.models import PushMessage, TicketStatus
from tour_companion.notifications.push import (
    EXPO_PUSH_URL, ExpoPushTransport, chunk_messages, is_valid_push_token
)


def message(i=0):
    return PushMessage(to=f"ExponentPushToken[{i}]", title="Title", body="Body", data={"tourId": "t"})


def mock_session(body=None, error=None):
    session = Mock(spec=requests.Session)
    session.headers = {}
    if error is not None:
        session.post.side_effect = error
    else:
        response = Mock()
        response.raise_for_status.return_value = None
        response.json.return_value = body
        session.post.return_value = response
    return session


class TestTokenValidation:

    @pytest.mark.parametrize("token", [
        "ExponentPushToken[xxxxxxxxxxxxxxxxxxxxxx]",
        "ExpoPushToken[abc]",
        "F5741A13-BCDA-434B-A316-5DC0E6FFA94F",
    ])
    def test_valid_tokens(self, token):
        assert is_valid_push_token(token) is True

    @pytest.mark.parametrize("token", [None, "", 123, "ExponentPushToken[]", "fcm:abcdef", "not-a-token"])
    def test_invalid_tokens(self, token):
        assert is_valid_push_token(token) is False


class TestChunking:

    def test_chunks_are_capped_at_one_hundred(self):
        chunks = chunk_messages([message(i) for i in range(250)], chunk_size=500)
        assert [len(c) for c in chunks] == [100, 100, 50]

    def test_empty(self):
        assert chunk_messages([]) == []


class TestExpoPushTransport:
    """Tests for batch delivery against a mocked HTTP session."""

    def test_send_returns_ticket_per_message(self):
        session = mock_session({"data": [
            {"status": "ok", "id": "ticket-1"},
            {"status": "error", "message": "not registered", "details": {"error": "DeviceNotRegistered"}},
        ]})
        transport = ExpoPushTransport(session=session, access_token="secret")

        tickets = asyncio.run(transport.send([message(1), message(2)]))

        assert tickets[0].status == TicketStatus.OK
        assert tickets[0].ticket_id == "ticket-1"
        assert tickets[1].is_ok is False
        assert tickets[1].details == {"error": "DeviceNotRegistered"}

        args, kwargs = session.post.call_args
        assert args[0] == EXPO_PUSH_URL
        assert kwargs["json"][0]["channelId"] == "default"
        assert kwargs["json"][0]["sound"] == "default"
        assert session.headers["Authorization"] == "Bearer secret"

    def test_empty_batch_does_not_post(self):
        session = mock_session({"data": []})
        assert asyncio.run(ExpoPushTransport(session=session).send([])) == []
        session.post.assert_not_called()

    def test_network_error_raises_transport_error(self):
        session = mock_session(error=requests.ConnectionError("refused"))
        transport = ExpoPushTransport(session=session)

        with pytest.raises(PushTransportError) as exc_info:
            asyncio.run(transport.send([message()]))
        assert exc_info.value.details["batch_size"] == 1

    @pytest.mark.parametrize("body", [
        {"errors": [{"code": "PUSH_TOO_MANY_EXPERIENCE_IDS"}]},
        {"data": []},
        ["unexpected"],
    ])
    def test_bad_responses_raise_transport_error(self, body):
        transport = ExpoPushTransport(session=mock_session(body))
        with pytest.raises(PushTransportError):
            asyncio.run(transport.send([message()]))

    def test_chunk_uses_configured_size(self):
        transport = ExpoPushTransport(session=mock_session(), chunk_size=40)
        assert [len(c) for c in transport.chunk([message(i) for i in range(90)])] == [40, 40, 10]
