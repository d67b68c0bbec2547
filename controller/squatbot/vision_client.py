"""Vision process: camera frames -> GameEngine -> controller WebSocket."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import websockets
from pydantic import ValidationError

from .config import GameConfig, Settings, get_settings
from .game import Detection, GameEngine
from .lifecycle import run_with_restart
from .logging_config import configure_logging
from .state import SET_CONFIG, LifecycleEvent, WireMessage
from .vision.face_source import WebcamFaceSource

logger = logging.getLogger(__name__)


class FaceSource(Protocol):
    def read(self) -> Optional[List[Detection]]: ...

    def close(self) -> None: ...


class VisionClient:
    """Runs the game next to the camera and reports to the controller.

    Events are sent at most once. Anything emitted while the controller link is
    down is dropped, not replayed after reconnecting.
    """

    _OUTBOX_SIZE: int = 32
    _IDLE_FRAME_SLEEP_S: float = 0.01

    def __init__(self, settings: Settings, source: Optional[FaceSource] = None) -> None:
        self.settings = settings
        self.engine = GameEngine(self._enqueue, settings.game, debug=settings.debug)
        self._source: FaceSource = source or WebcamFaceSource(
            camera_id=settings.camera_id,
            width=settings.camera_width,
            height=settings.camera_height,
            confidence=settings.face_confidence,
        )
        self._conn: Optional[Any] = None
        self._outbox: asyncio.Queue[LifecycleEvent] = asyncio.Queue(maxsize=self._OUTBOX_SIZE)
        self._stop_event = asyncio.Event()
        self._tasks: List[asyncio.Task[None]] = []
        self.dropped_events = 0

    @property
    def connected(self) -> bool:
        return self._conn is not None

    async def run(self) -> None:
        logger.info("SquatBot vision client starting (controller=%s)", self.settings.controller_ws_url)
        tasks = self._tasks = [
            asyncio.create_task(self._connection_loop(), name="vision-ws"),
            asyncio.create_task(self._sender_loop(), name="vision-sender"),
            asyncio.create_task(self._frame_loop(), name="vision-frames"),
        ]
        try:
            # any task ending with an error ends the run
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()
        finally:
            self._stop_event.set()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._source.close()

    def stop(self) -> None:
        """Make :meth:`run` return normally."""
        self._stop_event.set()
        for task in self._tasks:
            task.cancel()

    def handle_message(self, payload: Dict[str, Any]) -> None:
        """Apply one message from the controller."""
        try:
            message = WireMessage.from_json_dict(payload)
        except ValueError as e:
            logger.warning("Invalid message from controller: %s", e)
            return

        if message.type != SET_CONFIG:
            logger.warning("Unknown message type from controller: %s", message.type)
            return
        try:
            config = GameConfig.model_validate(message.data or {})
        except ValidationError as e:
            logger.warning("Rejected setConfig: %s", e)
            return
        self.engine.set_config(config)

    def process_frame(self, detections: Optional[List[Detection]]) -> None:
        self.engine.analyze_faces(detections or [])

    def _enqueue(self, event: LifecycleEvent) -> None:
        if self._conn is None:
            self.dropped_events += 1
            logger.warning("Controller not connected - dropping %s", event.value)
            return
        if self._outbox.full():
            try:
                dropped = self._outbox.get_nowait()
                self.dropped_events += 1
                logger.warning("Outbox full - dropping %s", dropped.value)
            except QueueEmpty:
                pass
        self._outbox.put_nowait(event)

    async def _connection_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                logger.info("Connecting to controller websocket %s", self.settings.controller_ws_url)
                async with websockets.connect(self.settings.controller_ws_url) as conn:
                    self._conn = conn
                    logger.info("SquatBot: controller connected")
                    await self._listen(conn)
            except asyncio.CancelledError:
                raise
            except websockets.ConnectionClosedOK:
                logger.info("Controller websocket closed cleanly")
            except (OSError, websockets.WebSocketException) as exc:
                logger.warning("Controller websocket unavailable: %s", exc)
            finally:
                self._conn = None
            await asyncio.sleep(self.settings.reconnect_delay_s)

    async def _listen(self, conn: Any) -> None:
        async for message in conn:
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                logger.warning("Invalid JSON from controller: %s", message)
                continue
            if isinstance(payload, dict):
                self.handle_message(payload)

    async def _sender_loop(self) -> None:
        while True:
            event = await self._outbox.get()
            conn = self._conn
            if conn is None:
                self.dropped_events += 1
                logger.warning("Cannot send %s - controller not connected", event.value)
                continue
            try:
                await conn.send(json.dumps(WireMessage(type=event.value).to_json_dict()))
            except websockets.ConnectionClosed:
                self.dropped_events += 1
                logger.warning("Cannot send %s - websocket connection closed", event.value)

    async def _frame_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._stop_event.is_set():
            # one frame at a time, in capture order
            detections = await loop.run_in_executor(None, self._source.read)
            if detections is None:
                await asyncio.sleep(self._IDLE_FRAME_SLEEP_S)
                continue
            self.process_frame(detections)


async def _main(settings: Settings) -> None:
    await VisionClient(settings).run()


def run() -> None:
    settings = get_settings()
    configure_logging(
        settings.effective_log_level,
        settings.log_directory,
        settings.log_retention_days,
        process_name="vision",
    )
    logger.info("SquatBot vision client. Press Ctrl-C to exit.")
    run_with_restart(lambda: _main(settings), debug=settings.debug, name="SquatBot vision client")


if __name__ == "__main__":
    run()
