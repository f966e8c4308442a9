"""
Tests for the control loop tick, the status LED and the upload worker.
"""

import queue
from unittest.mock import Mock

import pytest

from plantnode import telemetry
from plantnode.control import PlantNode, UploadWorker
from plantnode.indicator import BlinkingLed
from plantnode.pumps import PumpState
from plantnode.uploads import FailureReason, UploadSuccess, latest_snapshot
from tests.conftest import FakeImageSource, FakeOutput, make_response, success_body

ENDPOINT = "https://script.google.com/macros/s/abc/exec"


@pytest.fixture
def led(clock):
    return BlinkingLed(FakeOutput(), period=0.5, clock=clock)


class TestBlinkingLed:

    def test_toggles_every_period(self, led, clock):
        led.start()
        led.update()
        assert led.output.writes == []
        clock.now = 0.5
        led.update()
        clock.now = 1.0
        led.update()
        assert led.output.writes == [True, False]

    def test_stop_turns_off(self, led, clock):
        led.start()
        clock.now = 0.5
        led.update()
        led.stop()
        assert led.output.writes[-1] is False
        clock.now = 5.0
        led.update()
        assert led.output.writes == [True, False]

    def test_invalid_period(self):
        with pytest.raises(ValueError):
            BlinkingLed(FakeOutput(), period=0)


class TestPlantNodeTick:

    def test_dry_soil_starts_cycle(self, sensor, raw_reader, pump, relay):
        raw_reader.value = 4095  # 0 %
        node = PlantNode(sensor, pump)

        result = node.tick()

        assert result["cycle_started"] is True
        assert result["pump_state"] == "watering"
        assert relay.is_on

    def test_wet_soil_leaves_pump_idle(self, sensor, raw_reader, pump, relay):
        raw_reader.value = 1300  # 100 %
        node = PlantNode(sensor, pump)

        result = node.tick()

        assert result["cycle_started"] is False
        assert pump.state is PumpState.IDLE
        assert relay.writes == [False]

    def test_cycle_not_restarted_while_running(self, sensor, raw_reader, pump, clock):
        raw_reader.value = 4095
        node = PlantNode(sensor, pump)
        node.tick()

        clock.now = 0.5
        assert node.tick()["cycle_started"] is False
        clock.now = 10.0
        assert node.tick()["cycle_started"] is False
        assert pump.status()["cycles"] == 1

    def test_next_cycle_after_soak(self, sensor, raw_reader, pump, clock):
        raw_reader.value = 4095
        node = PlantNode(sensor, pump)
        node.tick()

        clock.now = 21.0
        result = node.tick()
        # the soak finished this tick; the request is seen on the next one
        assert result["pump_state"] == "idle"
        assert node.tick()["cycle_started"] is True

    def test_led_blinks_during_cycle_only(self, sensor, raw_reader, pump, led, clock):
        raw_reader.value = 4095
        node = PlantNode(sensor, pump, led=led)
        node.tick()
        clock.now = 0.5
        node.tick()
        assert led.output.writes == [True]

        raw_reader.value = 1300
        clock.now = 30.0
        node.tick()
        assert not led.enabled
        assert led.output.writes[-1] is False

    def test_capture_queued_on_interval(self, sensor, pump, clock):
        uploader = Mock()
        uploader.submit.return_value = True
        uploader.results = queue.Queue()
        node = PlantNode(sensor, pump, uploader=uploader, capture_interval=600, clock=clock)

        assert node.tick()["capture_queued"] is True
        clock.now = 300
        assert node.tick()["capture_queued"] is False
        clock.now = 600
        assert node.tick()["capture_queued"] is True
        assert uploader.submit.call_count == 2
        uploader.submit.assert_called_with(50)

    def test_busy_uploader_retried_next_tick(self, sensor, pump, clock):
        uploader = Mock()
        uploader.submit.side_effect = [False, True]
        uploader.results = queue.Queue()
        node = PlantNode(sensor, pump, uploader=uploader, capture_interval=600, clock=clock)

        assert node.tick()["capture_queued"] is False
        clock.now = 1
        assert node.tick()["capture_queued"] is True

    def test_outcomes_drained(self, sensor, pump):
        uploader = Mock()
        uploader.submit.return_value = False
        uploader.results = queue.Queue()
        uploader.results.put("outcome")
        node = PlantNode(sensor, pump, uploader=uploader)

        node.tick()

        assert list(node.outcomes) == ["outcome"]


class TestUploadWorker:

    def test_run_job_uploads_and_publishes(self):
        session = Mock()
        session.post.return_value = make_response(200, success_body("https://d/x?id=1"))
        session.get.return_value = make_response(200, "9")
        source = FakeImageSource()
        worker = UploadWorker(source, ENDPOINT, channel_key="KEY", telemetry_host="h", session=session)

        outcome = worker.run_job(42)

        assert isinstance(outcome.result, UploadSuccess)
        assert outcome.published is True
        url = session.get.call_args[0][0]
        assert url.startswith("http://h/update?api_key=KEY&field1=https%253A")
        assert url.endswith("&field2=42")
        assert worker.last_outcome is outcome
        assert outcome.as_dict()["ok"] is True

    def test_failed_upload_still_publishes_moisture(self):
        session = Mock()
        session.post.return_value = make_response(500, "boom")
        session.get.return_value = make_response(200, "10")
        worker = UploadWorker(FakeImageSource(), ENDPOINT, channel_key="KEY", telemetry_host="h", session=session)

        outcome = worker.run_job(12)

        assert outcome.result.reason is FailureReason.PROTOCOL_ERROR
        assert session.get.call_args[0][0] == "http://h/update?api_key=KEY&field2=12"
        assert outcome.as_dict()["reason"] == "protocol_error"

    def test_no_channel_key_skips_telemetry(self):
        session = Mock()
        session.post.return_value = make_response(200, success_body())
        worker = UploadWorker(FakeImageSource(), ENDPOINT, channel_key="", session=session)

        outcome = worker.run_job(5)

        assert outcome.published is False
        session.get.assert_not_called()

    def test_missing_endpoint(self):
        session = Mock()
        worker = UploadWorker(FakeImageSource(), "", session=session)

        outcome = worker.run_job(5)

        assert outcome.result is None
        assert outcome.error == "no upload endpoint"
        session.post.assert_not_called()

    def test_camera_failure_becomes_outcome(self):
        session = Mock()
        worker = UploadWorker(FakeImageSource(fail=True), ENDPOINT, channel_key="KEY", session=session)

        outcome = worker.run_job(5)

        assert outcome.result is None
        assert "video0" in outcome.error
        session.post.assert_not_called()

    def test_single_slot(self):
        worker = UploadWorker(FakeImageSource(), ENDPOINT, session=Mock())

        assert worker.submit(1) is True
        assert worker.busy
        assert worker.submit(2) is False

    def test_background_thread_round_trip(self):
        session = Mock()
        session.post.return_value = make_response(200, success_body())
        session.get.return_value = make_response(200, "1")
        worker = UploadWorker(FakeImageSource(), ENDPOINT, channel_key="KEY", session=session)
        worker.start()
        try:
            assert worker.submit(33) is True
            outcome = worker.results.get(timeout=5)
        finally:
            worker.stop(timeout=5)

        assert isinstance(outcome.result, UploadSuccess)
        assert outcome.moisture_pct == 33
        assert not worker.busy
        assert worker.submit(34) is True

    def test_worker_survives_unexpected_camera_error(self):
        class GlitchySource(FakeImageSource):
            def acquire(self):
                if self.acquired == 0:
                    self.acquired += 1
                    raise KeyError("frame buffer")
                return super().acquire()

        session = Mock()
        session.post.return_value = make_response(200, success_body())
        source = GlitchySource()
        worker = UploadWorker(source, ENDPOINT, channel_key="", session=session)
        worker.start()
        try:
            assert worker.submit(1) is True
            first = worker.results.get(timeout=5)
            assert first.result is None
            assert "frame buffer" in first.error
            assert worker._thread.is_alive()

            assert worker.submit(2) is True
            second = worker.results.get(timeout=5)
        finally:
            worker.stop(timeout=5)

        assert isinstance(second.result, UploadSuccess)
        assert source.released == [source.data]
        assert worker._thread is None

    def test_crash_outside_capture_still_reported(self, monkeypatch):
        def broken(*args, **kwargs):
            raise TypeError("bad field value")

        monkeypatch.setattr(telemetry, "publish_fields", broken)
        session = Mock()
        session.post.return_value = make_response(200, success_body())
        worker = UploadWorker(FakeImageSource(), ENDPOINT, channel_key="KEY", session=session)
        worker.start()
        try:
            assert worker.submit(7) is True
            outcome = worker.results.get(timeout=5)
            assert worker.submit(8) is True
            worker.results.get(timeout=5)
        finally:
            worker.stop(timeout=5)

        assert outcome.error == "bad field value"
        assert outcome.moisture_pct == 7
        assert not worker.busy

    def test_stop_without_thread_does_not_block(self):
        worker = UploadWorker(FakeImageSource(), ENDPOINT, session=Mock())
        worker.submit(1)

        worker.stop(timeout=0.1)

        assert worker.busy

    def test_snapshot_kept_when_upload_fails(self, tmp_path):
        session = Mock()
        session.post.return_value = make_response(500, "boom")
        source = FakeImageSource()
        worker = UploadWorker(source, ENDPOINT, channel_key="", session=session, snapshot_dir=tmp_path / "snaps")

        outcome = worker.run_job(20)

        assert outcome.result.reason is FailureReason.PROTOCOL_ERROR
        saved = latest_snapshot(tmp_path / "snaps")
        assert saved is not None
        assert saved.read_bytes() == source.data
