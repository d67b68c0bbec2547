"""Central configuration for the SquatBot controller and vision client."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class GameConfig(BaseModel):
    """Game tuning pushed from the controller to the vision client.

    Serialized with the camelCase names the vision client expects on the wire.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    target_squats: int = Field(3, ge=1, alias="targetSquats", description="Squats needed to unlock a drink")
    game_start_timeout_s: float = Field(3.0, ge=0, alias="gameStartTimeout_s", description="Seconds a face must be seen before a game starts")
    game_left_timeout_s: float = Field(3.0, ge=0, alias="gameLeftTimeout_s", description="Seconds without a face before a running game is cancelled")
    game_win_timeout_s: float = Field(10.0, ge=0, alias="gameWinTimeout_s", description="Seconds the game stays frozen after a win")
    top_offset_px: float = Field(20.0, alias="topOffset_px", description="Offset added to the start position for the top line")
    bottom_offset_px: float = Field(0.0, alias="bottomOffset_px", description="Offset subtracted from the scaled start position for the bottom line")
    squat_factor: float = Field(1.2, gt=0, alias="squatFactor", description="Scale applied to the start position for the bottom line")
    face_min_x: float = Field(100.0, alias="faceMinX", description="Left edge of the usable face region (pixels)")
    face_max_x: float = Field(540.0, alias="faceMaxX", description="Right edge of the usable face region (pixels)")

    def to_wire(self) -> Dict[str, float]:
        return self.model_dump(by_alias=True)


class ChannelSettings(BaseModel):
    """One dispensing channel (pump)."""

    name: str = Field(..., min_length=1, description="Unique channel id")
    display_name: str = Field("", description="Screen description")
    contains_alcohol: bool = Field(False, description="True for spirits")
    gpio: int = Field(..., ge=0, description="BCM GPIO number driving the pump relay (active low)")
    flow_rate_ml_per_min: float = Field(109.0, gt=0, description="Measured pump flow in ml per minute")


class ButtonSettings(BaseModel):
    """Physical button with its indicator LED."""

    id: int = Field(..., ge=1, description="Button / LED id")
    button_gpio: int = Field(..., ge=0, description="BCM GPIO number of the button input")
    led_gpio: int = Field(..., ge=0, description="BCM GPIO number of the LED output")
    channel: str = Field(..., description="Channel dispensed when this button is pressed")


def _default_channels() -> List[ChannelSettings]:
    pins = [17, 27, 22, 23, 24, 25, 12, 13, 16, 19, 20, 21]
    channels = [
        ChannelSettings(name="vodka", display_name="Vodka", contains_alcohol=True, gpio=pins[0]),
        ChannelSettings(name="juice", display_name="Orange juice", contains_alcohol=False, gpio=pins[1]),
    ]
    for index, pin in enumerate(pins[2:], start=3):
        channels.append(ChannelSettings(name=f"pump{index}", display_name=f"Pump {index}", gpio=pin))
    return channels


def _default_buttons() -> List[ButtonSettings]:
    return [
        ButtonSettings(id=1, button_gpio=5, led_gpio=7, channel="vodka"),
        ButtonSettings(id=2, button_gpio=6, led_gpio=8, channel="juice"),
    ]


class Settings(BaseSettings):
    """Environment-driven settings for both processes."""

    # Runtime
    debug: bool = Field(False, description="Verbose traces; crash instead of restarting on errors")
    enable_hardware: bool = Field(True, description="Drive real GPIO through gpiozero; simulated pins otherwise")

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")

    # Vision client
    controller_ws_url: str = Field("ws://127.0.0.1:5000/ws/vision", description="Controller WebSocket the vision client connects to")
    camera_id: int = Field(0, description="OpenCV camera index")
    camera_width: int = Field(640, description="Capture width (pixels)")
    camera_height: int = Field(480, description="Capture height (pixels)")
    face_confidence: float = Field(0.5, ge=0, le=1, description="MediaPipe face detection confidence threshold (0-1)")
    reconnect_delay_s: float = Field(2.0, gt=0, description="Delay between WebSocket reconnect attempts")

    # Buttons
    min_hold_duration_ms: float = Field(100.0, ge=0, description="Minimum hold for a button press to count")
    button_bounce_ms: int = Field(30, ge=0, description="Driver-level debounce for button inputs")

    # Dispensing
    drink_dose_cl: float = Field(4.0, gt=0, description="Dose poured per button press (cl)")
    tube_volume_cl: float = Field(50.0, gt=0, description="Dose used to prime or purge the tubing (cl)")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    game: GameConfig = Field(default_factory=GameConfig, description="Game tuning pushed to the vision client")
    channels: List[ChannelSettings] = Field(default_factory=_default_channels, description="Dispensing channels")
    buttons: List[ButtonSettings] = Field(default_factory=_default_buttons, description="Buttons and LEDs")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @model_validator(mode="after")
    def _check_wiring(self) -> "Settings":
        names = [channel.name for channel in self.channels]
        if len(set(names)) != len(names):
            raise ValueError("channel names must be unique")
        ids = [button.id for button in self.buttons]
        if len(set(ids)) != len(ids):
            raise ValueError("button ids must be unique")
        for button in self.buttons:
            if button.channel not in names:
                raise ValueError(f"button {button.id} references unknown channel {button.channel!r}")
        return self

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
