"""Face-position driven squat counting game."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Optional

from .config import GameConfig
from .state import Direction, GamePhase, LifecycleEvent, Position

logger = logging.getLogger(__name__)

# Sanity ceiling for the bottom line, calibrated for the installation's 640x480 camera
BOTTOM_Y_CEILING_PX = 400.0

EventSink = Callable[[LifecycleEvent], None]


@dataclass(frozen=True)
class BoundingBox:
    origin_x: float
    origin_y: float
    width: float
    height: float


@dataclass(frozen=True)
class Detection:
    bounding_box: Optional[BoundingBox] = None
    score: float = 0.0


@dataclass(frozen=True)
class Face:
    x: float = -1.0
    y: float = -1.0
    valid: bool = False


@dataclass
class GameSession:
    squat_count: int = 0
    direction: Direction = Direction.DOWN
    top_y: float = 0.0
    bottom_y: float = 0.0
    state: GamePhase = GamePhase.IDLE
    last_face_seen_at: float = 0.0
    last_win_at: float = 0.0
    session_started_at: float = 0.0
    # start of the current continuous face sighting while not running
    first_seen_at: float = 0.0


class GameEngine:
    """Advances the game once per camera frame and emits lifecycle events.

    ``sink`` is called synchronously for every event and must not block.
    """

    def __init__(
        self,
        sink: EventSink,
        config: Optional[GameConfig] = None,
        *,
        debug: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self._clock = clock
        self.debug = debug
        self.config = (config or GameConfig()).model_copy()
        now = clock()
        self.session = GameSession(last_face_seen_at=now, first_seen_at=now)

    @property
    def phase(self) -> GamePhase:
        return self.session.state

    def set_config(self, config: GameConfig) -> None:
        """Replace the whole configuration."""
        self.config = config.model_copy()
        logger.info("Game config replaced: %s", self.config.to_wire())

    @staticmethod
    def extract_face(detections: Optional[Sequence[Detection]]) -> Face:
        """First detection carrying a bounding box, reduced to its centre."""
        for detection in detections or ():
            box = detection.bounding_box
            if box is not None:
                return Face(x=box.origin_x + box.width / 2, y=box.origin_y + box.height / 2, valid=True)
        return Face()

    def compute_position(self, face: Face) -> Optional[Position]:
        if not face.valid:
            return None
        if face.y < self.session.top_y:
            return Position.TOP
        if face.y > self.session.bottom_y:
            return Position.BOTTOM
        return Position.MIDDLE

    def analyze_faces(self, detections: Optional[Sequence[Detection]], now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        session = self.session
        config = self.config
        face = self.extract_face(detections)

        if self.debug:
            logger.debug("face valid=%s x=%.1f y=%.1f phase=%s", face.valid, face.x, face.y, session.state.value)

        if face.valid:
            session.last_face_seen_at = now

        if session.state is GamePhase.WON:
            if now - session.last_win_at <= config.game_win_timeout_s:
                return
            # win timeout over: lock the buttons again and require a fresh sighting
            session.state = GamePhase.IDLE
            session.first_seen_at = now
            logger.info("Win timeout over, game reset")
            self._emit(LifecycleEvent.GAME_RESET)

        if session.state is GamePhase.RUNNING:
            self._advance_running(face, now)
        else:
            self._advance_idle(face, now)

    def _advance_running(self, face: Face, now: float) -> None:
        session = self.session
        config = self.config

        if now - session.last_face_seen_at > config.game_left_timeout_s:
            session.state = GamePhase.IDLE
            session.first_seen_at = now
            logger.info("Game cancelled: player left")
            self._emit(LifecycleEvent.GAME_CANCELLED)
            return

        position = self.compute_position(face)
        if position is Position.BOTTOM and session.direction is Direction.DOWN:
            session.direction = Direction.UP
            logger.info("Squat down")
            self._emit(LifecycleEvent.SQUAT_DOWN)
        elif position is Position.TOP and session.direction is Direction.UP:
            session.squat_count += 1
            session.direction = Direction.DOWN
            logger.info("Squat up. #squats: %d", session.squat_count)
            self._emit(LifecycleEvent.SQUAT_UP)

        if session.squat_count == config.target_squats:
            session.state = GamePhase.WON
            session.last_win_at = now
            logger.info("Game won. Drink unlocked.")
            self._emit(LifecycleEvent.GAME_WON)

    def _advance_idle(self, face: Face, now: float) -> None:
        session = self.session

        if not face.valid:
            session.first_seen_at = now
            session.state = GamePhase.IDLE
            return

        if session.state is GamePhase.IDLE:
            session.first_seen_at = now
            session.state = GamePhase.ARMED
        if now - session.first_seen_at <= self.config.game_start_timeout_s:
            return

        self._start_game(face, now)

    def _start_game(self, face: Face, now: float) -> None:
        session = self.session
        config = self.config
        top_y = face.y + config.top_offset_px
        bottom_y = min(face.y * config.squat_factor - config.bottom_offset_px, BOTTOM_Y_CEILING_PX)
        if top_y >= bottom_y:
            logger.warning(
                "Not starting game: top line %.1f is not above bottom line %.1f (face y=%.1f)",
                top_y, bottom_y, face.y,
            )
            session.first_seen_at = now
            return

        session.squat_count = 0
        session.direction = Direction.DOWN
        session.top_y = top_y
        session.bottom_y = bottom_y
        session.last_face_seen_at = now
        session.session_started_at = now
        session.state = GamePhase.RUNNING
        logger.info("Start game: topY=%.1f bottomY=%.1f", top_y, bottom_y)
        self._emit(LifecycleEvent.GAME_STARTED)

    def _emit(self, event: LifecycleEvent) -> None:
        self._sink(event)


__all__ = ["GameEngine", "GameSession", "Detection", "BoundingBox", "Face", "EventSink", "BOTTOM_Y_CEILING_PX"]
