"""
Tests for realtime.py - channel bookkeeping and the /ws event flow.
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, Mock

from app import create_app
from realtime import MESSAGE_FAILED, ChannelManager
from session_store import SessionStoreError
from tests.fakes import make_config, make_container, make_model, run
from tests.test_logger import test_logger


def _socket():
    websocket = Mock()
    websocket.send_json = AsyncMock()
    return websocket


class TestChannelManager:
    """Test join/leave and fan-out."""

    def setup_method(self):
        test_logger.log_section("TESTING: realtime.py - ChannelManager")
        self.channels = ChannelManager()

    def test_join_and_leave_all(self):
        with test_logger.case("realtime.py", "ChannelManager.join()", "membership"):
            ws = _socket()
            self.channels.join("a", ws)
            self.channels.join("b", ws)
            assert self.channels.channels_of(ws) == {"a", "b"}

            self.channels.leave_all(ws)
            assert self.channels.members("a") == set()
            assert self.channels.channels_of(ws) == set()

    def test_broadcast_excludes_sender(self):
        with test_logger.case("realtime.py", "ChannelManager.broadcast()", "exclude"):
            sender, other = _socket(), _socket()
            self.channels.join("abc", sender)
            self.channels.join("abc", other)

            delivered = run(self.channels.broadcast("abc", "typing", True, exclude=sender))

            assert delivered == 1
            other.send_json.assert_awaited_once_with({"event": "typing", "data": True})
            sender.send_json.assert_not_awaited()

    def test_closed_socket_is_dropped(self):
        with test_logger.case("realtime.py", "ChannelManager.emit()", "closed_socket"):
            closed = _socket()
            closed.send_json.side_effect = RuntimeError("Cannot call send once closed")
            self.channels.join("abc", closed)

            assert run(self.channels.broadcast("abc", "typing", False)) == 0
            assert self.channels.members("abc") == set()


@pytest.fixture
def container():
    return make_container(model=make_model("Live answer."))


@pytest.fixture
def client(container):
    with TestClient(create_app(container=container, config=make_config())) as test_client:
        yield test_client


class TestRealtimeGateway:
    """Test the WebSocket event flow end to end."""

    def setup_method(self):
        test_logger.log_section("TESTING: realtime.py - RealtimeGateway")

    def test_join_acknowledged(self, client):
        with test_logger.case("realtime.py", "on_join_session()", "joined_ack"):
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"event": "join-session", "data": "abc"})
                assert ws.receive_json() == {"event": "joined", "data": "abc"}

    def test_send_message_round_trip(self, client, container):
        with test_logger.case("realtime.py", "on_send_message()", "message_response"):
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"event": "join-session", "data": {"sessionId": "abc"}})
                ws.receive_json()

                ws.send_json({"event": "send-message", "data": {"message": "What happened?", "sessionId": "abc"}})
                frame = ws.receive_json()

            assert frame["event"] == "message-response"
            assert frame["data"]["user"] == "What happened?"
            assert frame["data"]["bot"] == "Live answer."
            assert "timestamp" in frame["data"]

            history = run(container.session_store.get_session_history("abc"))
            assert [h.user for h in history] == ["What happened?"]

    def test_typing_goes_to_other_members(self, client):
        with test_logger.case("realtime.py", "on_send_message()", "typing_indicator"):
            with client.websocket_connect("/ws") as sender, client.websocket_connect("/ws") as watcher:
                for ws in (sender, watcher):
                    ws.send_json({"event": "join-session", "data": "abc"})
                    ws.receive_json()

                sender.send_json({"event": "send-message", "data": {"message": "hi", "sessionId": "abc"}})

                assert sender.receive_json()["event"] == "message-response"
                assert watcher.receive_json() == {"event": "typing", "data": True}
                assert watcher.receive_json() == {"event": "typing", "data": False}
                response = watcher.receive_json()
                assert response["event"] == "message-response"
                assert response["data"]["bot"] == "Live answer."

    def test_missing_fields_error_to_sender(self, client):
        with test_logger.case("realtime.py", "on_send_message()", "missing_fields"):
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"event": "send-message", "data": {"message": "hi"}})
                frame = ws.receive_json()
            assert frame["event"] == "error"

    def test_invalid_frames(self, client):
        with test_logger.case("realtime.py", "dispatch()", "invalid_frames"):
            with client.websocket_connect("/ws") as ws:
                ws.send_text("not json")
                assert ws.receive_json()["event"] == "error"
                ws.send_json(["list"])
                assert ws.receive_json()["event"] == "error"
                ws.send_json({"event": "shout", "data": None})
                assert ws.receive_json()["event"] == "error"
                ws.send_json({"event": "join-session", "data": ""})
                assert ws.receive_json()["event"] == "error"

    def test_processing_failure_reports_error(self, client, container):
        with test_logger.case("realtime.py", "on_send_message()", "store_failure"):
            container.session_store.add_to_history = AsyncMock(side_effect=SessionStoreError("down"))
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"event": "join-session", "data": "abc"})
                ws.receive_json()
                ws.send_json({"event": "send-message", "data": {"message": "hi", "sessionId": "abc"}})
                assert ws.receive_json() == {"event": "error", "data": MESSAGE_FAILED}

    def test_failure_clears_typing_for_watchers(self, client, container):
        with test_logger.case("realtime.py", "on_send_message()", "typing_cleared_on_failure"):
            container.session_store.add_to_history = AsyncMock(side_effect=SessionStoreError("down"))
            with client.websocket_connect("/ws") as sender, client.websocket_connect("/ws") as watcher:
                for ws in (sender, watcher):
                    ws.send_json({"event": "join-session", "data": "abc"})
                    ws.receive_json()

                sender.send_json({"event": "send-message", "data": {"message": "hi", "sessionId": "abc"}})

                assert sender.receive_json() == {"event": "error", "data": MESSAGE_FAILED}
                assert watcher.receive_json() == {"event": "typing", "data": True}
                assert watcher.receive_json() == {"event": "typing", "data": False}
