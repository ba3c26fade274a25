"""Session bus connector and signal construction."""

import enum
import logging
from typing import Any, Sequence

from dbus_fast import BusType, Message, MessageType
from dbus_fast.aio import MessageBus

from badge_relay.core import BusSendError, ConnectError, RelayConfig

logger = logging.getLogger(__name__)

# Python value types and their D-Bus type codes, checked in order
# (bool before int, since bool is an int subclass).
_TYPE_CODES: tuple[tuple[type, str], ...] = (
    (str, "s"),
    (bool, "b"),
    (int, "x"),
    (float, "d"),
    (bytes, "ay"),
)


def signature_of(values: Sequence[Any]) -> str:
    """Compute the D-Bus signature of a message body from its value types."""
    signature = ""
    for value in values:
        for py_type, code in _TYPE_CODES:
            if isinstance(value, py_type):
                signature += code
                break
        else:
            raise TypeError(f"No D-Bus type for value {value!r}")
    return signature


def build_signal(config: RelayConfig, window_id: str, label: str, color: str) -> Message:
    """Build the badge signal for a window, addressed per the relay config."""
    values = [window_id, label, color]
    return Message(
        message_type=MessageType.SIGNAL,
        destination=config.bus_destination,
        path=config.bus_path,
        interface=config.bus_interface,
        member=config.bus_member,
        signature=signature_of(values),
        body=values,
    )


class ConnectionState(enum.Enum):
    """Lifecycle of the session bus connection."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class BusConnector:
    """Holds the single session bus connection of the process."""

    def __init__(self, bus: MessageBus | None = None) -> None:
        self._bus = bus
        self._state = (
            ConnectionState.CONNECTED if bus is not None else ConnectionState.DISCONNECTED
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    async def ensure_connected(self) -> MessageBus:
        """Return the session bus connection, dialing it on first use.

        Once connected, the stored handle is returned as-is; it is not
        checked for liveness.

        Raises:
            ConnectError: If the session bus cannot be reached. The
                connector stays disconnected and does not retry.
        """
        if self._state is ConnectionState.CONNECTED:
            assert self._bus is not None
            return self._bus

        try:
            bus = await MessageBus(bus_type=BusType.SESSION).connect()
        except Exception as e:
            raise ConnectError(f"could not fetch dbus SessionBus: {e}") from e

        self._bus = bus
        self._state = ConnectionState.CONNECTED
        logger.info("Connected to D-Bus session bus")
        return bus

    async def emit(self, signal: Message) -> None:
        """Send a signal over the session bus.

        Raises:
            BusSendError: If the connection is unavailable or the send fails.
        """
        try:
            bus = await self.ensure_connected()
            await bus.send(signal)
        except Exception as e:
            raise BusSendError(str(e)) from e
