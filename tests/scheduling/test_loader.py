"""Tests for the YAML schedule loader."""

import textwrap
from pathlib import Path

import pytest

from cronspine.core.errors import (
    DuplicateScheduleError,
    InvalidConfigError,
    InvalidCronError,
    ScheduleLoadError,
    UnknownTimezoneError,
)
from cronspine.core.scheduling.loader import (
    load_registry_from_dict,
    load_registry_from_yaml,
    registry_to_dict,
)


def write(tmp_path, content: str):
    path = tmp_path / "schedules.yaml"
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


class TestLoadFromYaml:
    def test_schedule_set_document(self, tmp_path):
        path = write(
            tmp_path,
            """
            apiVersion: cronspine.io/v1
            kind: ScheduleSet
            schedules:
              - name: nightly-report
                cron: "0 2 * * *"
                timezone: Europe/London
                queue: reports
                class: NightlyReportJob
                args: [full]
                kwargs:
                  region: eu
              - name: heartbeat
                cron: "* * * * * */30"
                class: HeartbeatJob
                enabled: false
            """,
        )

        registry = load_registry_from_yaml(path)

        assert registry.names() == ("heartbeat", "nightly-report")
        nightly = registry.get("nightly-report")
        assert nightly.job_class == "NightlyReportJob"
        assert nightly.args == ("full",)
        assert nightly.kwargs == {"region": "eu"}
        assert registry.get("heartbeat").expression.has_seconds
        assert [s.name for s in registry.enabled()] == ["nightly-report"]

    def test_short_form(self, tmp_path):
        path = write(
            tmp_path,
            """
            cleanup:
              cron: "0 * * * *"
              class: CleanupJob
            """,
        )
        assert load_registry_from_yaml(path).get("cleanup").job_class == "CleanupJob"

    def test_empty_file(self, tmp_path):
        assert len(load_registry_from_yaml(write(tmp_path, ""))) == 0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_registry_from_yaml(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ScheduleLoadError, match="Invalid YAML"):
            load_registry_from_yaml(write(tmp_path, "schedules: [unclosed"))

    def test_path_in_error_context(self, tmp_path):
        path = write(
            tmp_path,
            """
            broken:
              cron: "every day"
              class: J
            """,
        )
        with pytest.raises(InvalidCronError) as excinfo:
            load_registry_from_yaml(path)
        assert excinfo.value.context.metadata["path"] == str(path)
        assert excinfo.value.context.schedule == "broken"


class TestLoadFromDict:
    def test_none_is_empty(self):
        assert len(load_registry_from_dict(None)) == 0

    def test_duplicate_names(self):
        with pytest.raises(DuplicateScheduleError):
            load_registry_from_dict(
                {
                    "schedules": [
                        {"name": "a", "cron": "* * * * *", "class": "J"},
                        {"name": "a", "cron": "0 * * * *", "class": "J"},
                    ]
                }
            )

    def test_unknown_timezone(self):
        with pytest.raises(UnknownTimezoneError):
            load_registry_from_dict({"a": {"cron": "* * * * *", "class": "J", "timezone": "Nowhere/Land"}})

    def test_unsupported_api_version(self):
        with pytest.raises(InvalidConfigError, match="apiVersion"):
            load_registry_from_dict({"apiVersion": "cronspine.io/v9", "schedules": []})

    def test_wrong_kind(self):
        with pytest.raises(InvalidConfigError, match="kind"):
            load_registry_from_dict({"kind": "PipelineGroup", "schedules": []})

    @pytest.mark.parametrize("data", [["a"], "text", {"schedules": "nope"}, {"a": "not-a-mapping"}])
    def test_malformed(self, data):
        with pytest.raises(ScheduleLoadError):
            load_registry_from_dict(data)

    def test_round_trip(self):
        registry = load_registry_from_dict(
            {"a": {"cron": "*/5 * * * *", "class": "J", "queue": "q", "timezone": "Asia/Tokyo"}}
        )
        again = load_registry_from_dict(registry_to_dict(registry))
        assert again.get("a") == registry.get("a")


class TestExampleFile:
    def test_example_schedule_file_loads(self):
        path = Path(__file__).resolve().parents[2] / "config" / "schedules.example.yaml"
        registry = load_registry_from_yaml(path)

        assert "nightly-report" in registry.names()
        assert registry.get("heartbeat").expression.has_seconds
        assert [s.name for s in registry.enabled()] == ["heartbeat", "hourly-sync", "nightly-report"]
