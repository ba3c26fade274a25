"""Tests for the relay service and its FastAPI app."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from dbus_fast import MessageType
from fastapi.testclient import TestClient

from badge_relay.bus import BusConnector
from badge_relay.core import ConfigError, RelayConfig
from badge_relay.server import RelayService, create_app, result_text


class RecordingLog:
    """Structured log sink that keeps entries in memory."""

    def __init__(self):
        self.entries: list[dict[str, str]] = []

    def log(self, **fields: str) -> None:
        self.entries.append(fields)


@pytest.fixture
def config():
    return RelayConfig(
        host="localhost",
        port=18989,
        bus_destination="org.gnome.Shell",
        bus_path="/org/shalott/dbus/DockIcon",
        bus_interface="org.shalott.dbus.DockIcon",
        bus_member="SetAppNotifications",
    )


@pytest.fixture
def mock_bus():
    bus = MagicMock()
    bus.send = AsyncMock()
    return bus


@pytest.fixture
def relay_log():
    return RecordingLog()


@pytest.fixture
def relay(config, mock_bus, relay_log):
    return RelayService(config, BusConnector(bus=mock_bus), log=relay_log)


@pytest.fixture
def client(relay):
    with TestClient(create_app(relay)) as client:
        yield client


class TestResultText:
    def test_ok(self):
        assert result_text(None) == "OK"

    def test_error(self):
        assert result_text(Exception("no reply")) == "err:no reply"


class TestRelayEndpoint:
    """Tests for POST /{window_id}."""

    def test_success(self, client, mock_bus, relay_log):
        """Test that a valid request emits one signal and logs OK."""
        response = client.post("/main", content=b'{"label":"Build","color":"red"}')

        assert response.status_code == 200
        assert response.content == b""

        mock_bus.send.assert_awaited_once()
        msg = mock_bus.send.call_args[0][0]
        assert msg.message_type == MessageType.SIGNAL
        assert msg.destination == "org.gnome.Shell"
        assert msg.path == "/org/shalott/dbus/DockIcon"
        assert msg.interface == "org.shalott.dbus.DockIcon"
        assert msg.member == "SetAppNotifications"
        assert msg.signature == "sss"
        assert msg.body == ["main", "Build", "red"]

        assert relay_log.entries == [
            {"windowID": "main", "label": "Build", "color": "red", "result": "OK"}
        ]

    def test_send_failure(self, client, mock_bus, relay_log):
        """Test that a failed send returns 500 and logs the error."""
        mock_bus.send.side_effect = Exception("no reply")

        response = client.post("/main", content=b'{"label":"Build","color":"red"}')

        assert response.status_code == 500
        assert "no reply" in response.text
        assert response.text.startswith("unable to raise signal:")
        assert len(relay_log.entries) == 1
        assert relay_log.entries[0]["result"] == "err:no reply"

    @pytest.mark.parametrize("path", ["/", "/%20", "/%20%20%09"])
    @pytest.mark.parametrize("body", [b'{"label":"1"}', b"{"])
    def test_missing_window_id(self, client, mock_bus, relay_log, path, body):
        response = client.post(path, content=body)

        assert response.status_code == 400
        assert response.text == "missing window ID"
        mock_bus.send.assert_not_called()
        assert relay_log.entries == []

    @pytest.mark.parametrize(
        "body", [b"{", b"", b"not json", b'{"label": 1}', b'{"color": []}', b"[]"]
    )
    def test_malformed_body(self, client, mock_bus, relay_log, body):
        response = client.post("/main", content=body)

        assert response.status_code == 400
        assert response.text == "malformed body"
        mock_bus.send.assert_not_called()
        assert relay_log.entries == []

    def test_omitted_fields_default_to_empty(self, client, mock_bus, relay_log):
        response = client.post("/firefox", content=b"{}")

        assert response.status_code == 200
        msg = mock_bus.send.call_args[0][0]
        assert msg.body == ["firefox", "", ""]
        assert relay_log.entries[0]["label"] == ""
        assert relay_log.entries[0]["color"] == ""

    @pytest.mark.parametrize(
        "body,expected",
        [
            (b'{"label": null, "color": "red"}', ["main", "", "red"]),
            (b'{"label":"1"}\n{"label":"2"}', ["main", "1", ""]),
            (b'{"Label":"3","COLOR":"red"}', ["main", "3", "red"]),
            (b"null", ["main", "", ""]),
        ],
    )
    def test_lenient_body_decoding(self, client, mock_bus, relay_log, body, expected):
        """Test nulls, trailing data and key case are accepted like encoding/json."""
        response = client.post("/main", content=body)

        assert response.status_code == 200
        assert mock_bus.send.call_args[0][0].body == expected
        assert relay_log.entries[0]["result"] == "OK"

    def test_window_id_is_trimmed(self, client, mock_bus):
        response = client.post("/%20main%20", content=b"{}")

        assert response.status_code == 200
        assert mock_bus.send.call_args[0][0].body[0] == "main"

    def test_each_request_sends_once(self, client, mock_bus, relay_log):
        for _ in range(3):
            client.post("/main", content=b'{"label":"1"}')

        assert mock_bus.send.await_count == 3
        assert len(relay_log.entries) == 3

    def test_get_not_allowed(self, client):
        response = client.get("/main")
        assert response.status_code == 405


class TestRelayService:
    """Tests for RelayService construction."""

    def test_listen_addr(self, relay):
        assert relay.listen_addr == "localhost:18989"

    @pytest.mark.asyncio
    async def test_create_with_injected_bus(self, config, mock_bus):
        with patch("badge_relay.bus.MessageBus") as mock_message_bus_class:
            relay = await RelayService.create(config, bus=mock_bus)

        assert relay.connector.is_connected
        assert await relay.connector.ensure_connected() is mock_bus
        mock_message_bus_class.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_dials_session_bus_once(self, config, mock_bus):
        with patch("badge_relay.bus.MessageBus") as mock_message_bus_class:
            mock_message_bus_class.return_value.connect = AsyncMock(
                return_value=mock_bus
            )
            relay = await RelayService.create(config)

        assert await relay.connector.ensure_connected() is mock_bus
        mock_message_bus_class.return_value.connect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_fails_without_bus(self, config):
        with patch("badge_relay.bus.MessageBus") as mock_message_bus_class:
            mock_message_bus_class.return_value.connect = AsyncMock(
                side_effect=OSError("no session bus")
            )
            with pytest.raises(ConfigError, match="could not fetch dbus SessionBus"):
                await RelayService.create(config)

    @pytest.mark.asyncio
    async def test_create_uses_nop_log_by_default(self, config, mock_bus):
        relay = await RelayService.create(config, bus=mock_bus)
        relay.log.log(windowID="main", result="OK")
