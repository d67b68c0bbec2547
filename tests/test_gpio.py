from __future__ import annotations

import asyncio

import pytest
from gpiozero import Device

from squatbot.hardware.gpio import HIGH, LOW, HardwareUnavailableError, PinFactory

from .conftest import written


async def test_output_pin_starts_at_initial_level(pins):
    relay = pins.output(17, initial=HIGH)

    assert relay.value == HIGH
    await relay.write(LOW)
    assert relay.value == LOW
    assert written(relay) == [HIGH, LOW]


async def test_input_pin_reports_edges_on_the_loop(pins):
    levels = []
    button = pins.input(5)
    button.watch(levels.append)

    button.device.pin.drive_high()
    button.device.pin.drive_low()
    assert levels == []
    await asyncio.sleep(0)

    assert levels == [HIGH, LOW]


def test_opened_finds_pin_by_gpio(pins):
    led = pins.output(7)

    assert pins.opened(7) is led
    with pytest.raises(KeyError):
        pins.opened(8)


def test_close_all_releases_devices(pins):
    led = pins.output(7)
    pins.close_all()

    assert led.device.closed
    with pytest.raises(KeyError):
        pins.opened(7)


def test_each_factory_has_its_own_mock_pins():
    first, second = PinFactory(enable_hardware=False), PinFactory(enable_hardware=False)
    try:
        assert first.output(17).device.pin is not second.output(17).device.pin
    finally:
        first.close_all()
        second.close_all()


def test_missing_pin_driver_is_reported(monkeypatch):
    monkeypatch.setattr(Device, "pin_factory", None)
    monkeypatch.setenv("GPIOZERO_PIN_FACTORY", "no-such-factory")
    pins = PinFactory(enable_hardware=True)

    with pytest.raises(HardwareUnavailableError, match="GPIO17"):
        pins.output(17)
    with pytest.raises(HardwareUnavailableError, match="GPIO5"):
        pins.input(5)
