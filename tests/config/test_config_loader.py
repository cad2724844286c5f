"""
Tests for configuration loading (lab_config.loader and lab_config.get_*).

Covers:
- Scalar parsers (parse_time, parse_day, parse_final_authority)
- Directory parsing -- reference and duplicate checks
- Settings parsing and checksum determinism
- get_settings / get_directory on the shipped default set
- DATABASE_URL override and custom config directories
"""

from __future__ import annotations

from datetime import time

import pytest
import yaml

from lab_config import get_directory, get_settings
from lab_config.loader import (
    compute_checksum,
    parse_day,
    parse_directory,
    parse_final_authority,
    parse_settings,
    parse_time,
)
from lab_kernel.domain.lifecycle import FinalAuthority


def _directory_data(**overrides):
    data = {
        "departments": [
            {"id": 1, "name": "CE", "final_authority": "hod", "authority_user_id": 9001},
        ],
        "resources": [
            {"id": 7, "name": "Software Lab 1", "department_id": 1, "staff_ids": [503]},
        ],
        "schedule": [
            {
                "resource_id": 7,
                "day_of_week": "Monday",
                "start_time": "11:00",
                "end_time": "13:00",
                "label": "SE Practical",
            },
        ],
        "components": [],
    }
    data.update(overrides)
    return data


# =========================================================================
# 1. Scalar parsers
# =========================================================================


class TestParseTime:
    def test_iso_string(self):
        assert parse_time("09:30") == time(9, 30)

    def test_sexagesimal_integer(self):
        # Unquoted 09:00 in YAML 1.1 arrives as 540.
        assert parse_time(540) == time(9, 0)

    def test_unquoted_yaml_value(self):
        assert parse_time(yaml.safe_load("t: 13:45")["t"]) == time(13, 45)

    def test_time_passthrough(self):
        assert parse_time(time(8)) == time(8)

    def test_rejects_other_types(self):
        with pytest.raises(ValueError):
            parse_time(9.5)


class TestParseDay:
    @pytest.mark.parametrize("value,expected", [
        ("Sunday", 0),
        ("monday", 1),
        ("Fri", 5),
        (" SATURDAY ", 6),
        (3, 3),
    ])
    def test_accepted(self, value, expected):
        assert parse_day(value) == expected

    @pytest.mark.parametrize("value", [7, -1, "Funday", True, None])
    def test_rejected(self, value):
        with pytest.raises(ValueError):
            parse_day(value)


class TestParseFinalAuthority:
    def test_known_values(self):
        assert parse_final_authority("HOD") is FinalAuthority.HOD
        assert parse_final_authority("lab_coordinator") is FinalAuthority.LAB_COORDINATOR

    def test_unknown_value(self):
        with pytest.raises(ValueError, match="Unknown final authority"):
            parse_final_authority("dean")


# =========================================================================
# 2. Directory parsing
# =========================================================================


class TestParseDirectory:
    def test_parses_all_sections(self):
        directory = parse_directory(_directory_data())
        assert directory.departments[0].final_authority is FinalAuthority.HOD
        assert directory.resources[0].staff_ids == (503,)
        entry = directory.schedule[0]
        assert (entry.day_of_week, entry.start_time, entry.end_time) == (1, time(11), time(13))
        assert entry.is_active

    def test_empty_section(self):
        directory = parse_directory({})
        assert directory.resources == ()

    def test_unknown_department(self):
        data = _directory_data(resources=[{"id": 7, "name": "x", "department_id": 99}])
        with pytest.raises(ValueError, match="unknown department 99"):
            parse_directory(data)

    def test_schedule_unknown_resource(self):
        data = _directory_data(schedule=[{
            "resource_id": 42,
            "day_of_week": 1,
            "start_time": "09:00",
            "end_time": "10:00",
        }])
        with pytest.raises(ValueError, match="unknown resource 42"):
            parse_directory(data)

    def test_component_unknown_resource(self):
        data = _directory_data(
            components=[{"id": 1, "resource_id": 42, "name": "x", "quantity": 1}],
        )
        with pytest.raises(ValueError, match="unknown resource 42"):
            parse_directory(data)

    def test_duplicate_resource(self):
        resource = {"id": 7, "name": "x", "department_id": 1}
        with pytest.raises(ValueError, match="Duplicate resource"):
            parse_directory(_directory_data(resources=[resource, resource]))

    def test_inverted_timetable_entry(self):
        data = _directory_data(schedule=[{
            "resource_id": 7,
            "day_of_week": 1,
            "start_time": "13:00",
            "end_time": "11:00",
        }])
        with pytest.raises(ValueError, match="ends before it starts"):
            parse_directory(data)

    def test_negative_quantity(self):
        data = _directory_data(
            components=[{"id": 1, "resource_id": 7, "name": "x", "quantity": -1}],
        )
        with pytest.raises(ValueError, match="negative quantity"):
            parse_directory(data)

    def test_missing_required_key(self):
        with pytest.raises(KeyError):
            parse_directory(_directory_data(departments=[{"id": 1, "name": "CE"}]))


# =========================================================================
# 3. Settings
# =========================================================================


class TestParseSettings:
    def test_defaults(self):
        settings = parse_settings({"database": {"url": "sqlite://"}})
        assert settings.database.pool_size == 20
        assert settings.logging.level == "INFO"
        assert settings.sweep.interval_seconds == 300.0
        assert settings.sweep.batch_limit is None

    def test_checksum_deterministic(self):
        a = {"database": {"url": "sqlite://", "echo": False}, "sweep": {"batch_limit": 5}}
        b = {"sweep": {"batch_limit": 5}, "database": {"echo": False, "url": "sqlite://"}}
        assert compute_checksum(a) == compute_checksum(b)
        assert parse_settings(a).checksum == parse_settings(b).checksum

    def test_checksum_changes_with_content(self):
        a = {"database": {"url": "sqlite://"}}
        b = {"database": {"url": "sqlite:///other.db"}}
        assert compute_checksum(a) != compute_checksum(b)


# =========================================================================
# 4. Configuration sets
# =========================================================================


class TestConfigSets:
    def test_default_settings(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = get_settings()
        assert settings.database.url == "sqlite:///lab_requests.db"
        assert settings.sweep.batch_limit == 500
        assert settings.sweep.interval_seconds == 300.0
        assert len(settings.checksum) == 64

    def test_database_url_override(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://lab@localhost/lab")
        settings = get_settings()
        assert settings.database.url == "postgresql://lab@localhost/lab"
        assert settings.sweep.batch_limit == 500

    def test_default_directory(self):
        directory = get_directory()
        authorities = {d.department_id: d.final_authority for d in directory.departments}
        assert authorities == {1: FinalAuthority.HOD, 2: FinalAuthority.LAB_COORDINATOR}
        assert {r.resource_id for r in directory.resources} == {3, 4, 7, 8}
        assert {c.component_id for c in directory.components} == {101, 102, 201}
        monday_lab = [e for e in directory.schedule if e.resource_id == 7 and e.day_of_week == 1]
        assert monday_lab[0].label == "SE Practical Batch A"

    def test_custom_config_dir(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        payload = {
            "settings": {
                "database": {"url": "sqlite://"},
                "sweep": {"interval_seconds": 60, "batch_limit": 10},
            },
            "directory": _directory_data(),
        }
        (tmp_path / "pilot.yaml").write_text(yaml.safe_dump(payload))

        settings = get_settings("pilot", config_dir=tmp_path)
        directory = get_directory("pilot", config_dir=tmp_path)

        assert settings.sweep.interval_seconds == 60.0
        assert settings.sweep.batch_limit == 10
        assert [r.resource_id for r in directory.resources] == [7]

    def test_missing_set(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_settings("nope", config_dir=tmp_path)

    def test_config_loaded_trace(self, captured_logs, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = get_settings()
        records = [r for r in captured_logs() if r["message"] == "config_loaded"]
        assert records[-1]["checksum"] == settings.checksum
        assert records[-1]["set_name"] == "default"
