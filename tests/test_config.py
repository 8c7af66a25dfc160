"""
Tests for YAML configuration and policy resolution.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from availability_engine.config import CONFIG_ENV_VAR, AppConfig, get_default_config_path
from availability_engine.domain.exceptions import UnknownResource

EXAMPLE_CONFIG = Path(__file__).parent.parent / "config.example.yaml"


def write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadFromYaml:

    def test_example_config_loads(self):
        config = AppConfig.load_from_yaml(EXAMPLE_CONFIG)

        assert config.timezone == "America/New_York"
        assert [r.id for r in config.resources] == ["dr-jensen", "dr-okafor"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            AppConfig.load_from_yaml(tmp_path / "absent.yaml")

    def test_empty_file_uses_defaults(self, tmp_path):
        config = AppConfig.load_from_yaml(write_config(tmp_path, ""))

        assert config.backend == "google"
        assert config.search.days_to_check == 7
        assert config.search.max_slots == 4
        assert config.defaults.operating_start_hour == 8
        assert config.defaults.operating_end_hour == 18

    def test_root_must_be_mapping(self, tmp_path):
        with pytest.raises(ValueError, match="mapping"):
            AppConfig.load_from_yaml(write_config(tmp_path, "- one\n- two\n"))

    def test_broken_yaml(self, tmp_path):
        with pytest.raises(ValueError, match="Invalid YAML"):
            AppConfig.load_from_yaml(write_config(tmp_path, "defaults: [unclosed\n"))


class TestValidation:

    @pytest.mark.parametrize(
        "data",
        [
            {"timezone": "Nowhere/City"},
            {"defaults": {"operating_start_hour": 18, "operating_end_hour": 8}},
            {"defaults": {"operating_end_hour": 25}},
            {"defaults": {"alignment_minutes": 0}},
            {"defaults": {"weekend_days": [7]}},
            {"search": {"max_slots": 0}},
            {"search": {"upstream_timeout_seconds": 0}},
            {"backend": "outlook"},
            {"resources": [{"id": "a"}, {"id": "a"}]},
            {"resources": [{"id": "a", "name": "Dr A"}, {"id": "b", "name": "dr a"}]},
            {"resources": [{"id": "a", "timezone": "Nowhere/City"}]},
            # Override clashes with the default end hour of 18
            {"resources": [{"id": "a", "policy": {"operating_start_hour": 19}}]},
        ],
    )
    def test_invalid_config(self, data):
        with pytest.raises(ValidationError):
            AppConfig(**data)


class TestPolicyResolution:

    def test_only_explicit_overrides_replace_defaults(self):
        config = AppConfig(
            defaults={"operating_start_hour": 7, "alignment_minutes": 20, "required_free_minutes": 40},
            resources=[{"id": "dr-okafor", "timezone": "America/Phoenix", "policy": {"alignment_minutes": 15}}],
        )

        policy = config.resolve_policy(config.resources[0])

        assert policy.timezone == "America/Phoenix"
        assert policy.operating_start_hour == 7
        assert policy.operating_end_hour == 18
        assert policy.alignment_minutes == 15
        assert policy.required_free_minutes == 40
        assert policy.weekend_days == (5, 6)

    def test_resource_inherits_system_timezone(self):
        config = AppConfig(timezone="Europe/Berlin", resources=[{"id": "dr-weber"}])

        assert config.resolve_policy(config.resources[0]).timezone == "Europe/Berlin"

    def test_policy_table(self):
        config = AppConfig.load_from_yaml(EXAMPLE_CONFIG)

        table = config.build_policy_table()

        assert len(table) == 2
        okafor = table.resolve("Ada Okafor")
        assert okafor.id == "dr-okafor"
        assert okafor.policy.operating_start_hour == 9
        assert okafor.policy.operating_end_hour == 15
        assert table.resolve("jodene.jensen@clinic.example").id == "dr-jensen"
        assert "dr-okafor" in table
        with pytest.raises(UnknownResource):
            table.resolve("dr-nobody")

    def test_calendar_id_defaults_to_resource_id(self):
        config = AppConfig(resources=[{"id": "room-3@clinic.example"}])

        profile = config.build_policy_table().resolve("room-3@clinic.example")

        assert profile.calendar_id == "room-3@clinic.example"

    def test_policy_table_is_read_only(self):
        table = AppConfig.load_from_yaml(EXAMPLE_CONFIG).build_policy_table()

        with pytest.raises(TypeError):
            table._profiles["dr-new"] = table.resolve("dr-jensen")


class TestDefaultConfigPath:

    def test_environment_variable_wins(self, monkeypatch, tmp_path):
        target = tmp_path / "clinic.yaml"
        monkeypatch.setenv(CONFIG_ENV_VAR, str(target))

        assert get_default_config_path() == target

    def test_current_directory(self, monkeypatch, tmp_path):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)
        write_config(tmp_path, "")

        assert get_default_config_path() == tmp_path / "config.yaml"
