"""Shared state definitions for the SquatBot controller and vision client."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional


class GamePhase(str, enum.Enum):
    """
    Game phases in chronological order:

    1. IDLE     - No face tracked, no countdown
    2. ARMED    - Face visible, start countdown running
    3. RUNNING  - Counting squats
    4. WON      - Drink unlocked, game frozen for the win timeout
    """
    IDLE = "idle"
    ARMED = "armed"
    RUNNING = "running"
    WON = "won"


class LifecycleEvent(str, enum.Enum):
    """Fire-and-forget notifications from the vision client to the controller."""

    GAME_STARTED = "gameStarted"
    GAME_WON = "gameWon"
    GAME_CANCELLED = "gameCancelled"
    GAME_RESET = "gameReset"
    SQUAT_DOWN = "squatDown"
    SQUAT_UP = "squatUp"


class Direction(enum.Enum):
    UP = "up"
    DOWN = "down"


class Position(enum.Enum):
    TOP = "top"
    MIDDLE = "middle"
    BOTTOM = "bottom"


class ButtonLevel(enum.IntEnum):
    """Raw button level as delivered by the GPIO driver."""

    RELEASED = 0
    PRESSED = 1


class LedMode(str, enum.Enum):
    OFF = "off"
    ON = "on"
    BLINK_CONTINUOUS = "blink_continuous"


SET_CONFIG = "setConfig"


@dataclass
class WireMessage:
    """JSON text frame exchanged over the vision WebSocket."""

    type: str
    data: Optional[Dict[str, Any]] = None

    def to_json_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type}
        if self.data is not None:
            payload["data"] = self.data
        return payload

    @classmethod
    def from_json_dict(cls, payload: Dict[str, Any]) -> "WireMessage":
        message_type = payload.get("type")
        if not isinstance(message_type, str):
            raise ValueError(f"message without type: {payload!r}")
        data = payload.get("data")
        if data is not None and not isinstance(data, dict):
            raise ValueError(f"message data must be an object: {payload!r}")
        return cls(type=message_type, data=data)


__all__ = [
    "GamePhase",
    "LifecycleEvent",
    "Direction",
    "Position",
    "ButtonLevel",
    "LedMode",
    "SET_CONFIG",
    "WireMessage",
]
