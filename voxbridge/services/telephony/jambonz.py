"""jambonz WebSocket application server."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Any, Callable, Sequence

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from voxbridge import __version__
from voxbridge.config.settings import Settings
from voxbridge.core.commands import Command, CommandSink, ToolResult, render
from voxbridge.core.hooks import HookEvent, HookKind, parse_message
from voxbridge.core.session import CallSession
from voxbridge.core.state_machine import CallState
from voxbridge.utils.exceptions import ProtocolError, TelephonyError
from voxbridge.utils.logging import get_logger

logger = get_logger(__name__)

SUBPROTOCOL = "ws.jambonz.org"
WORKER_DRAIN_TIMEOUT = 2.0  # Seconds a session gets to handle its close event


class JambonzSocketSink:
    """Command sink writing jambonz protocol messages to a WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def _send(self, message: dict[str, Any]) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            raise TelephonyError("WebSocket is not connected", details={"type": message["type"]})
        try:
            await self.websocket.send_json(message)
        except Exception as e:
            raise TelephonyError(f"Failed to send {message['type']}: {e}") from e

    async def reply(self, msgid: str | None, commands: Sequence[Command]) -> None:
        message: dict[str, Any] = {"type": "ack", "msgid": msgid}
        if commands:
            message["data"] = render(commands)
        await self._send(message)

    async def redirect(self, commands: Sequence[Command]) -> None:
        await self._send(
            {
                "type": "command",
                "command": "redirect",
                "queueCommand": False,
                "data": render(commands),
            }
        )

    async def send_tool_output(self, result: ToolResult) -> None:
        await self._send(
            {
                "type": "command",
                "command": "llm:tool-output",
                "tool_call_id": result.invocation_id,
                "data": result.to_payload(),
            }
        )


SessionFactory = Callable[[str, Settings, CommandSink], CallSession]


class CallServer:
    """Accepts jambonz WebSocket connections, one call per connection.

    Each connection gets a CallSession fed from the socket:
    - the first routable message must be session:new
    - every further message is parsed and queued on the session
    - a disconnect is delivered to the session as a close event
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: SessionFactory | None = None,
    ):
        """Initialize the call server.

        Args:
            settings: Application settings
            session_factory: Factory creating call sessions.
                             Defaults to CallSession.
        """
        self.settings = settings
        self._session_factory = session_factory or CallSession
        self._active_calls: dict[str, CallSession] = {}
        self._workers: dict[str, asyncio.Task] = {}

    async def serve(self, websocket: WebSocket) -> None:
        """Handle one jambonz connection until it closes."""
        offered = websocket.scope.get("subprotocols") or []
        await websocket.accept(subprotocol=SUBPROTOCOL if SUBPROTOCOL in offered else None)

        sink = JambonzSocketSink(websocket)
        session: CallSession | None = None

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    event = parse_message(raw)
                except ProtocolError as e:
                    logger.warning("invalid_message", error=e.message, **e.details)
                    continue

                if event is None:
                    continue

                if session is None:
                    if event.kind != HookKind.SESSION_NEW:
                        logger.warning("event_before_session", kind=event.kind.value)
                        continue
                    session = self._open_session(event.call_sid or str(uuid.uuid4()), sink)

                await session.post(event)

        except WebSocketDisconnect as e:
            if session is not None:
                await session.post(
                    HookEvent(
                        HookKind.CLOSE,
                        {"code": e.code, "reason": getattr(e, "reason", "") or "socket closed"},
                        call_sid=session.id,
                    )
                )
        except Exception as e:
            logger.error("connection_error", error=str(e))
            if session is not None:
                await session.post(HookEvent(HookKind.ERROR, {"error": str(e)}, call_sid=session.id))
        finally:
            if session is not None:
                await self._finish_session(session)

    def _open_session(self, call_id: str, sink: CommandSink) -> CallSession:
        session = self._session_factory(call_id, self.settings, sink)

        def on_state_change(old_state: CallState, new_state: CallState) -> None:
            if new_state == CallState.CLOSED:
                self._active_calls.pop(call_id, None)

        session.state_machine.add_listener(on_state_change)
        self._active_calls[call_id] = session
        self._workers[call_id] = asyncio.create_task(session.run())

        logger.info("call_started", call_id=call_id, active_calls=self.active_call_count)
        return session

    async def _finish_session(self, session: CallSession) -> None:
        """Let the session process its close event, then forget it.

        A worker cancelled by ``stop`` is expected; cancellation of the
        connection handler itself is propagated once the session is closed.
        """
        worker = self._workers.pop(session.id, None)
        try:
            if worker is not None:
                try:
                    await asyncio.wait_for(worker, timeout=WORKER_DRAIN_TIMEOUT)
                except asyncio.TimeoutError:
                    logger.warning("session_worker_timeout", call_id=session.id)
                except asyncio.CancelledError:
                    current = asyncio.current_task()
                    if current is not None and current.cancelling():
                        raise
        finally:
            session.close("connection ended")
            self._active_calls.pop(session.id, None)
            logger.info(
                "call_ended",
                call_id=session.id,
                reason=session.close_reason,
                active_calls=self.active_call_count,
            )

    async def stop(self) -> None:
        """Close every active call and stop their workers."""
        for session in list(self._active_calls.values()):
            session.close("server shutdown")

        for worker in self._workers.values():
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers.values(), return_exceptions=True)

        self._workers.clear()
        self._active_calls.clear()
        logger.info("call_server_stopped")

    @property
    def active_call_count(self) -> int:
        """Number of active calls."""
        return len(self._active_calls)

    def get_active_calls(self) -> list[str]:
        """Get list of active call IDs."""
        return list(self._active_calls.keys())


def create_app(settings: Settings, server: CallServer | None = None) -> FastAPI:
    """Build the FastAPI application serving jambonz on ``settings.ws_path``."""
    call_server = server or CallServer(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("call_server_ready", path=settings.ws_path)
        yield
        await call_server.stop()

    app = FastAPI(title="Voxbridge", version=__version__, lifespan=lifespan)
    app.state.call_server = call_server

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "active_calls": call_server.get_active_calls(),
            "agent_configured": settings.agent_configured,
        }

    @app.websocket(settings.ws_path)
    async def jambonz_socket(websocket: WebSocket) -> None:
        await call_server.serve(websocket)

    return app
