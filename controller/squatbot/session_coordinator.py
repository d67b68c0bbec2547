"""Binds game lifecycle events to button/LED feedback and drink dispensing."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, Dict, List, Optional, Set

from .config import Settings
from .hardware.buttons import HardwareIOController
from .hardware.pumps import ActuatorController
from .state import SET_CONFIG, LifecycleEvent, WireMessage

logger = logging.getLogger(__name__)

EventHandler = Callable[[], Awaitable[None]]
FailureCallback = Callable[[BaseException], None]


class EventChannel:
    """Publish/subscribe with exactly one handler per event kind."""

    def __init__(self) -> None:
        self._handlers: Dict[LifecycleEvent, EventHandler] = {}

    def subscribe(self, kind: LifecycleEvent, handler: EventHandler) -> None:
        if kind in self._handlers:
            logger.debug("Replacing handler for %s", kind.value)
        self._handlers[kind] = handler

    def unsubscribe(self, kind: LifecycleEvent) -> None:
        self._handlers.pop(kind, None)

    async def publish(self, kind: LifecycleEvent) -> None:
        handler = self._handlers.get(kind)
        if handler is None:
            logger.warning("No handler for %s", kind.value)
            return
        await handler()


class SessionCoordinator:
    """Reacts to lifecycle events from the vision client on the hardware side.

    Delivery is best effort: every event is handled at most once and nothing
    is acknowledged. A lost ``gameWon`` leaves the buttons locked until the
    next game.
    """

    _START_BLINK_MS: float = 1000
    _SQUAT_BLINK_MS: float = 500
    # outlasts a squat blink still in flight when the win arrives
    _WIN_SETTLE_S: float = 0.55
    _SQUAT_DOWN_LED: int = 2
    _SQUAT_UP_LED: int = 1

    def __init__(
        self,
        *,
        settings: Settings,
        hardware: HardwareIOController,
        actuators: ActuatorController,
        on_failure: Optional[FailureCallback] = None,
    ) -> None:
        self.settings = settings
        self.hardware = hardware
        self.actuators = actuators
        self.channel = EventChannel()
        self._on_failure = on_failure
        self._tasks: Set[asyncio.Task[Any]] = set()
        self._led_ids: List[int] = [button.id for button in settings.buttons]
        self.last_event: Optional[LifecycleEvent] = None

        self.channel.subscribe(LifecycleEvent.GAME_STARTED, self._on_game_started)
        self.channel.subscribe(LifecycleEvent.GAME_CANCELLED, self._on_game_cancelled)
        self.channel.subscribe(LifecycleEvent.GAME_WON, self._on_game_won)
        self.channel.subscribe(LifecycleEvent.GAME_RESET, self._on_game_reset)
        self.channel.subscribe(LifecycleEvent.SQUAT_DOWN, self._on_squat_down)
        self.channel.subscribe(LifecycleEvent.SQUAT_UP, self._on_squat_up)

        for button in settings.buttons:
            self.hardware.on_press(button.id, lambda channel=button.channel: self._on_button(channel))

    # ------------------------------------------------------------------
    # Transport side
    # ------------------------------------------------------------------

    def config_message(self) -> WireMessage:
        return WireMessage(type=SET_CONFIG, data=self.settings.game.to_wire())

    def handle_message(self, payload: Dict[str, Any]) -> Optional[asyncio.Task[None]]:
        """Dispatch one message from the vision client without waiting for it."""
        try:
            message = WireMessage.from_json_dict(payload)
            kind = LifecycleEvent(message.type)
        except ValueError as e:
            logger.warning("Dropping message from vision client: %s", e)
            return None
        return self.dispatch(kind)

    def dispatch(self, kind: LifecycleEvent) -> asyncio.Task[None]:
        return self.spawn(self.handle(kind), name=f"event-{kind.value}")

    async def handle(self, kind: LifecycleEvent) -> None:
        logger.info("SquatBot: %s", kind.value)
        self.last_event = kind
        await self.channel.publish(kind)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error stopping coordinator task: %s", e)
        self._tasks.clear()

    def spawn(self, coro: Coroutine[Any, Any, None], *, name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("Coordinator task %s failed: %r", task.get_name(), exc)
        if self._on_failure:
            self._on_failure(exc)

    # ------------------------------------------------------------------
    # Lifecycle handlers
    # ------------------------------------------------------------------

    async def _on_game_started(self) -> None:
        self.hardware.enabled = False
        await asyncio.gather(*(self.hardware.blink_once(led, self._START_BLINK_MS) for led in self._led_ids))

    async def _on_game_cancelled(self) -> None:
        self.hardware.enabled = False
        await self.hardware.leds_off()

    async def _on_game_won(self) -> None:
        logger.info("SquatBot: Yay! Game won! Buttons are now enabled.")
        await asyncio.sleep(self._WIN_SETTLE_S)
        for led in self._led_ids:
            await self.hardware.led_on(led)
        self.hardware.enabled = True

    async def _on_game_reset(self) -> None:
        self.hardware.enabled = False
        await self.hardware.leds_off()

    async def _on_squat_down(self) -> None:
        await self.hardware.blink_once(self._SQUAT_DOWN_LED, self._SQUAT_BLINK_MS)

    async def _on_squat_up(self) -> None:
        await self.hardware.blink_once(self._SQUAT_UP_LED, self._SQUAT_BLINK_MS)

    # ------------------------------------------------------------------
    # Buttons
    # ------------------------------------------------------------------

    def _on_button(self, channel_id: str) -> None:
        # one drink per win
        self.hardware.enabled = False
        self.spawn(self._pour(channel_id), name=f"pour-{channel_id}")

    async def _pour(self, channel_id: str) -> None:
        await self.hardware.leds_off()
        await self.actuators.dispense(channel_id, self.settings.drink_dose_cl)


__all__ = ["EventChannel", "SessionCoordinator"]
