"""FastAPI server module: the HTTP -> D-Bus relay."""

from dbus_fast.aio import MessageBus
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from badge_relay.bus import BusConnector, build_signal
from badge_relay.core import (
    BusSendError,
    ClientInputError,
    ConfigError,
    ConnectError,
    NopRelayLog,
    NotificationRequest,
    RelayConfig,
    RelayLog,
)


def result_text(err: Exception | None) -> str:
    if err is None:
        return "OK"
    return f"err:{err}"


class RelayService:
    """Translates badge requests into D-Bus signals."""

    def __init__(
        self,
        config: RelayConfig,
        connector: BusConnector,
        log: RelayLog | None = None,
    ) -> None:
        self.config = config
        self.connector = connector
        self.log = log or NopRelayLog()

    @classmethod
    async def create(
        cls,
        config: RelayConfig,
        *,
        log: RelayLog | None = None,
        bus: MessageBus | None = None,
    ) -> "RelayService":
        """Build a relay and check that the session bus is reachable.

        Args:
            config: Validated relay configuration.
            log: Structured sink for per-request entries.
            bus: Pre-built bus connection, used instead of dialing.

        Raises:
            ConfigError: If no bus was given and the session bus cannot be reached.
        """
        relay = cls(config, BusConnector(bus=bus), log=log)
        try:
            await relay.connector.ensure_connected()
        except ConnectError as e:
            raise ConfigError(str(e)) from e
        return relay

    @property
    def listen_addr(self) -> str:
        return self.config.listen_addr

    def parse(self, window_id: str, body: bytes) -> tuple[str, NotificationRequest]:
        """Validate the path parameter and decode the request body.

        Raises:
            ClientInputError: On an empty window ID or a malformed body.
        """
        window_id = window_id.strip()
        if not window_id:
            raise ClientInputError("missing window ID")

        try:
            notification = NotificationRequest.decode(body)
        except ValueError as e:
            raise ClientInputError("malformed body") from e

        return window_id, notification

    async def raise_signal(self, window_id: str, notification: NotificationRequest) -> None:
        """Send one badge signal and log the attempt.

        Raises:
            BusSendError: If the signal could not be sent.
        """
        err: BusSendError | None = None
        try:
            signal = build_signal(
                self.config, window_id, notification.label, notification.color
            )
            await self.connector.emit(signal)
        except BusSendError as e:
            err = e

        self.log.log(
            windowID=window_id,
            label=notification.label,
            color=notification.color,
            result=result_text(err),
        )
        if err is not None:
            raise err

    async def handle(self, window_id: str, body: bytes) -> Response:
        """Handle one badge request, returning the HTTP response."""
        try:
            window_id, notification = self.parse(window_id, body)
        except ClientInputError as e:
            return PlainTextResponse(e.message, status_code=400)

        try:
            await self.raise_signal(window_id, notification)
        except BusSendError as e:
            return PlainTextResponse(f"unable to raise signal: {e}", status_code=500)

        return Response(status_code=200)


def create_app(relay: RelayService) -> FastAPI:
    """Create the HTTP app serving a relay."""
    app = FastAPI(
        title="Badge Relay",
        description="Relays HTTP badge requests for dock icons to D-Bus signals.",
        version="0.1.0",
    )

    @app.post("/")
    async def missing_window(request: Request) -> Response:
        return await relay.handle("", await request.body())

    @app.post("/{window_id}")
    async def set_window_notifications(window_id: str, request: Request) -> Response:
        return await relay.handle(window_id, await request.body())

    return app
