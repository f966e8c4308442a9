"""
Shared fixtures: a hand-driven clock, recording GPIO outputs, an in-memory
image source and canned HTTP responses. Nothing here touches hardware or
the network.
"""

import json
from unittest.mock import Mock

import pytest

from plantnode import config_store, master_log
from plantnode.pumps import PumpController, PumpCycleConfig
from plantnode.sensors import MoistureSensor


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOutput:
    """Stands in for gpio.DigitalOutput and records every write."""

    def __init__(self):
        self.writes = []

    def set(self, on: bool) -> None:
        self.writes.append(on)

    @property
    def is_on(self) -> bool:
        return bool(self.writes) and self.writes[-1]


class FakeRawReader:
    def __init__(self, value: int):
        self.value = value
        self.calls = 0

    def __call__(self) -> int:
        self.calls += 1
        return self.value


class FakeImageSource:
    def __init__(self, data: bytes = b"\xff\xd8\x00jpeg\x00\xff\xd9", fail: bool = False):
        self.data = data
        self.fail = fail
        self.acquired = 0
        self.released = []

    def acquire(self):
        if self.fail:
            raise RuntimeError("Could not open /dev/video0")
        self.acquired += 1
        return self.data, len(self.data)

    def release(self, data: bytes) -> None:
        self.released.append(data)


def make_response(status_code: int = 200, text: str = "", headers=None) -> Mock:
    resp = Mock()
    resp.status_code = status_code
    resp.text = text
    resp.headers = headers or {}
    return resp


def success_body(url: str = "https://drive.google.com/uc?export=view&id=X") -> str:
    return json.dumps({"status": "success", "url": url})


@pytest.fixture(autouse=True)
def isolated_files(tmp_path, monkeypatch):
    """Keep master.csv and calibration.json inside the test's tmp dir."""
    monkeypatch.setattr(master_log, "DATA_DIR", tmp_path / "data")
    monkeypatch.setattr(master_log, "MASTER_LOG_FILE", tmp_path / "data" / "master.csv")
    monkeypatch.setattr(config_store, "CONFIG_DIR", tmp_path / "config")
    monkeypatch.setattr(config_store, "CALIBRATION_FILE", tmp_path / "config" / "calibration.json")
    return tmp_path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def relay():
    return FakeOutput()


@pytest.fixture
def raw_reader():
    # default calibration: 4095 dry (0 %), 1300 wet (100 %)
    return FakeRawReader(2697)


@pytest.fixture
def sensor(raw_reader, clock):
    return MoistureSensor(raw_reader, sampling_period=5.0, clock=clock)


@pytest.fixture
def pump(relay, clock):
    return PumpController(relay, PumpCycleConfig(on_duration=1.0, soak_duration=20.0), clock=clock)


@pytest.fixture
def image_source():
    return FakeImageSource()
