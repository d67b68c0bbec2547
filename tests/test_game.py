from __future__ import annotations

from typing import List, Optional, Tuple

import pytest

from squatbot.config import GameConfig
from squatbot.game import BOTTOM_Y_CEILING_PX, BoundingBox, Detection, GameEngine
from squatbot.state import Direction, GamePhase, LifecycleEvent, Position

E = LifecycleEvent


def face_at(y: float, x: float = 320.0) -> List[Detection]:
    return [Detection(bounding_box=BoundingBox(origin_x=x - 50, origin_y=y - 50, width=100, height=100))]


NO_FACE: List[Detection] = []


class Recorder:
    def __init__(self) -> None:
        self.events: List[Tuple[LifecycleEvent, int]] = []
        self.engine: Optional[GameEngine] = None

    def __call__(self, event: LifecycleEvent) -> None:
        self.events.append((event, self.engine.session.squat_count))

    @property
    def kinds(self) -> List[LifecycleEvent]:
        return [event for event, _ in self.events]


def make_engine(**config) -> Tuple[GameEngine, Recorder]:
    recorder = Recorder()
    engine = GameEngine(recorder, GameConfig(**config), clock=lambda: 0.0)
    recorder.engine = engine
    return engine, recorder


def start_game(engine: GameEngine, y: float = 300.0) -> float:
    """Hold a face at ``y`` long enough to start; returns the start time."""
    engine.analyze_faces(face_at(y), now=0.0)
    engine.analyze_faces(face_at(y), now=1.0)
    engine.analyze_faces(face_at(y), now=3.5)
    assert engine.phase is GamePhase.RUNNING
    return 3.5


def test_one_squat_wins_with_target_one():
    engine, recorder = make_engine(target_squats=1)
    start_game(engine)
    session = engine.session
    assert (session.top_y, session.bottom_y) == (320.0, 360.0)

    engine.analyze_faces(face_at(session.bottom_y + 1), now=4.0)
    engine.analyze_faces(face_at(session.top_y - 1), now=4.5)

    assert recorder.kinds == [E.GAME_STARTED, E.SQUAT_DOWN, E.SQUAT_UP, E.GAME_WON]
    assert recorder.events[-1] == (E.GAME_WON, 1)
    assert engine.phase is GamePhase.WON


def test_face_must_be_held_before_start():
    engine, recorder = make_engine()

    engine.analyze_faces(face_at(300), now=0.0)
    assert engine.phase is GamePhase.ARMED
    engine.analyze_faces(face_at(300), now=2.9)
    engine.analyze_faces(NO_FACE, now=3.2)
    assert engine.phase is GamePhase.IDLE
    engine.analyze_faces(face_at(300), now=3.3)
    engine.analyze_faces(face_at(300), now=6.0)

    assert recorder.kinds == []
    engine.analyze_faces(face_at(300), now=6.4)
    assert recorder.kinds == [E.GAME_STARTED]


def test_session_geometry_is_reset_on_start():
    engine, _ = make_engine(top_offset_px=10, bottom_offset_px=5, squat_factor=1.1)
    engine.session.squat_count = 7
    engine.session.direction = Direction.UP

    start_game(engine, y=200)

    assert engine.session.squat_count == 0
    assert engine.session.direction is Direction.DOWN
    assert engine.session.top_y == 210
    assert engine.session.bottom_y == pytest.approx(215)
    assert engine.session.session_started_at == 3.5


def test_bottom_line_is_clamped():
    engine, _ = make_engine()
    start_game(engine, y=340)
    assert engine.session.bottom_y == BOTTOM_Y_CEILING_PX


def test_inverted_geometry_does_not_start():
    engine, recorder = make_engine()

    engine.analyze_faces(face_at(10), now=0.0)
    engine.analyze_faces(face_at(10), now=5.0)

    assert recorder.kinds == []
    assert engine.phase is GamePhase.ARMED


def test_repeated_bottom_counts_nothing():
    engine, recorder = make_engine(target_squats=2)
    start_game(engine)

    for now, y in [(4.0, 361), (4.2, 370), (4.4, 340), (4.6, 365), (4.8, 380)]:
        engine.analyze_faces(face_at(y), now=now)

    assert recorder.kinds == [E.GAME_STARTED, E.SQUAT_DOWN]
    assert engine.session.squat_count == 0
    assert engine.session.direction is Direction.UP


def test_top_without_bottom_counts_nothing():
    engine, recorder = make_engine()
    start_game(engine)

    engine.analyze_faces(face_at(250), now=4.0)
    engine.analyze_faces(face_at(200), now=4.2)

    assert recorder.kinds == [E.GAME_STARTED]


def test_counts_full_cycles_until_target():
    engine, recorder = make_engine(target_squats=3)
    start_game(engine)

    now = 4.0
    for _ in range(3):
        engine.analyze_faces(face_at(365), now=now)
        engine.analyze_faces(face_at(340), now=now + 0.1)
        engine.analyze_faces(face_at(310), now=now + 0.2)
        now += 1.0

    assert recorder.kinds.count(E.SQUAT_UP) == 3
    assert recorder.kinds[-1] is E.GAME_WON
    assert recorder.events[-1] == (E.GAME_WON, 3)


def test_player_leaving_cancels_once():
    engine, recorder = make_engine()
    start_game(engine)

    for now in (4.0, 5.0, 6.0, 6.5):
        engine.analyze_faces(NO_FACE, now=now)
    assert engine.phase is GamePhase.RUNNING

    engine.analyze_faces(NO_FACE, now=6.6)
    engine.analyze_faces(NO_FACE, now=7.0)
    engine.analyze_faces([Detection(bounding_box=None)], now=9.0)

    assert recorder.kinds == [E.GAME_STARTED, E.GAME_CANCELLED]
    assert engine.phase is GamePhase.IDLE


def test_brief_face_loss_keeps_game_running():
    engine, recorder = make_engine()
    start_game(engine)

    engine.analyze_faces(NO_FACE, now=5.0)
    engine.analyze_faces(face_at(300), now=6.0)
    engine.analyze_faces(NO_FACE, now=8.5)

    assert engine.phase is GamePhase.RUNNING
    assert E.GAME_CANCELLED not in recorder.kinds


def test_win_freezes_then_resets():
    engine, recorder = make_engine(target_squats=1, game_win_timeout_s=10)
    start_game(engine)
    engine.analyze_faces(face_at(365), now=4.0)
    engine.analyze_faces(face_at(310), now=4.5)
    assert engine.phase is GamePhase.WON

    # frozen: even a full squat is ignored
    engine.analyze_faces(face_at(365), now=8.0)
    engine.analyze_faces(face_at(310), now=14.5)
    assert recorder.kinds[-1] is E.GAME_WON

    engine.analyze_faces(face_at(300), now=14.6)
    assert recorder.kinds[-1] is E.GAME_RESET
    assert engine.phase is GamePhase.ARMED

    engine.analyze_faces(face_at(300), now=17.0)
    assert recorder.kinds[-1] is E.GAME_RESET
    engine.analyze_faces(face_at(300), now=17.7)
    assert recorder.kinds[-1] is E.GAME_STARTED


def test_extract_face_uses_first_box():
    detections = [
        Detection(bounding_box=None),
        Detection(bounding_box=BoundingBox(origin_x=100, origin_y=50, width=40, height=60)),
        Detection(bounding_box=BoundingBox(origin_x=400, origin_y=300, width=10, height=10)),
    ]
    face = GameEngine.extract_face(detections)
    assert face.valid
    assert (face.x, face.y) == (120, 80)


@pytest.mark.parametrize("detections", [None, [], [Detection(), Detection()]])
def test_extract_face_without_boxes(detections):
    assert GameEngine.extract_face(detections).valid is False


def test_compute_position():
    engine, _ = make_engine()
    start_game(engine)

    assert engine.compute_position(GameEngine.extract_face(face_at(319))) is Position.TOP
    assert engine.compute_position(GameEngine.extract_face(face_at(340))) is Position.MIDDLE
    assert engine.compute_position(GameEngine.extract_face(face_at(361))) is Position.BOTTOM
    assert engine.compute_position(GameEngine.extract_face(NO_FACE)) is None


def test_set_config_replaces_everything():
    engine, recorder = make_engine()
    first = GameConfig(target_squats=5, top_offset_px=50, game_start_timeout_s=1)
    second = GameConfig(target_squats=2)

    engine.set_config(first)
    engine.set_config(second)

    assert engine.config == second
    assert engine.config.top_offset_px == 20
    assert engine.config.game_start_timeout_s == 3

    # start timeout from the second config applies
    engine.analyze_faces(face_at(300), now=0.0)
    engine.analyze_faces(face_at(300), now=2.0)
    assert recorder.kinds == []
