"""
Tests for persisted sensor tuning and the CSV event log.
"""

import csv

from plantnode import config_store, master_log


class TestConfigStore:

    def test_defaults_when_missing(self):
        data = config_store.load_calibration()
        assert data["moisture"] == {"dry_raw": 4095, "wet_raw": 1300, "lower_pct": 30, "upper_pct": 35}

    def test_defaults_are_not_shared(self):
        config_store.load_calibration()["moisture"]["dry_raw"] = 1
        assert config_store.load_calibration()["moisture"]["dry_raw"] == 4095

    def test_corrupt_file_falls_back(self, isolated_files):
        path = isolated_files / "config" / "calibration.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")

        assert config_store.load_calibration()["moisture"]["wet_raw"] == 1300

    def test_partial_file_merged_over_defaults(self, isolated_files):
        path = isolated_files / "config" / "calibration.json"
        path.parent.mkdir(parents=True)
        path.write_text('{"moisture": {"lower_pct": 25}}', encoding="utf-8")

        moisture = config_store.load_calibration()["moisture"]
        assert moisture["lower_pct"] == 25
        assert moisture["upper_pct"] == 35

    def test_setters_persist(self):
        config_store.set_moisture_calibration(3500, 1200)
        config_store.set_moisture_thresholds(40, 55)

        moisture = config_store.load_calibration()["moisture"]
        assert moisture == {"dry_raw": 3500, "wet_raw": 1200, "lower_pct": 40, "upper_pct": 55}


class TestMasterLog:

    def _rows(self, isolated_files):
        with (isolated_files / "data" / "master.csv").open(newline="", encoding="utf-8") as f:
            return list(csv.DictReader(f))

    def test_header_and_row(self, isolated_files):
        master_log.log_event("pump_state", source="test", pump_state="watering", bogus="ignored")
        master_log.log_event("upload", source="test", ok=False, reason="protocol_error")

        rows = self._rows(isolated_files)
        assert [r["event_type"] for r in rows] == ["pump_state", "upload"]
        assert rows[0]["pump_state"] == "watering"
        assert "bogus" not in rows[0]
        assert rows[1]["reason"] == "protocol_error"
        assert rows[1]["timestamp"]

    def test_explicit_timestamp(self, isolated_files):
        master_log.log_event("node_start", timestamp="2026-01-01T00:00:00+00:00")
        assert self._rows(isolated_files)[0]["timestamp"] == "2026-01-01T00:00:00+00:00"

    def test_record_swallows_io_errors(self, monkeypatch, caplog):
        def broken(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(master_log, "log_event", broken)
        master_log.record("pump_state", source="test")

        assert "disk full" in caplog.text
