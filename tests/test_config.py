"""Tests for configuration loading and settings precedence."""

import json

import pytest
from kube_health.config import ConfigLoader, Settings
from kube_health.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for env_var in ConfigLoader.ENV_MAPPING:
        monkeypatch.delenv(env_var, raising=False)


class TestConfigLoader:
    """Test cases for ConfigLoader.load."""

    def test_no_file_no_env(self):
        assert ConfigLoader.load() == {}

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("parallel: true\nmax-parallel: 4\ntimezone: Europe/Berlin\n")

        config = ConfigLoader.load(str(path))

        assert config == {"parallel": True, "max_parallel": 4, "timezone": "Europe/Berlin"}

    def test_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"verbose": True, "checks_dir": "/opt/checks"}))

        assert ConfigLoader.load(str(path)) == {"verbose": True, "checks_dir": "/opt/checks"}

    def test_empty_yaml_file(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("")

        assert ConfigLoader.load(str(path)) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            ConfigLoader.load(str(tmp_path / "nope.yaml"))

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with pytest.raises(ConfigError, match="Cannot parse"):
            ConfigLoader.load(str(path))

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError, match="mapping"):
            ConfigLoader.load(str(path))

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        """Environment variables win over the config file."""
        path = tmp_path / "config.yaml"
        path.write_text("timezone: UTC\nparallel: false\n")
        monkeypatch.setenv("KUBE_HEALTH_TIMEZONE", "Asia/Tokyo")
        monkeypatch.setenv("KUBE_HEALTH_PARALLEL", "yes")

        config = ConfigLoader.load(str(path))

        assert config["timezone"] == "Asia/Tokyo"
        assert config["parallel"] is True

    def test_env_value_types(self, monkeypatch):
        monkeypatch.setenv("KUBE_HEALTH_VERBOSE", "false")
        monkeypatch.setenv("KUBE_HEALTH_MAX_PARALLEL", "3")
        monkeypatch.setenv("KUBE_HEALTH_CHECK_TIMEOUT", "90.5")

        config = ConfigLoader.load()

        assert config == {"verbose": False, "max_parallel": 3, "check_timeout": 90.5}

    def test_bad_numeric_env_ignored(self, monkeypatch):
        monkeypatch.setenv("KUBE_HEALTH_MAX_PARALLEL", "many")

        assert "max_parallel" not in ConfigLoader.load()


class TestSettings:
    """Test cases for Settings.from_sources."""

    def test_defaults(self):
        settings = Settings.from_sources({}, {})

        assert settings.timezone == "UTC"
        assert settings.color == "auto"
        assert settings.parallel is False
        assert settings.max_parallel is None

    def test_cli_overrides_config(self):
        settings = Settings.from_sources({"timezone": "UTC", "output": "a.txt"}, {"output": "b.txt", "timezone": None})

        assert settings.output == "b.txt"
        assert settings.timezone == "UTC"

    def test_false_flag_keeps_config_value(self):
        """An unset CLI flag does not turn off a configured flag."""
        settings = Settings.from_sources({"parallel": True}, {"parallel": False})

        assert settings.parallel is True

    def test_unknown_keys_ignored(self):
        settings = Settings.from_sources({"colour": "never"}, {})

        assert settings.color == "auto"

    @pytest.mark.parametrize(
        "config, message",
        [
            ({"color": "rainbow"}, "Invalid color mode"),
            ({"timezone": "Mars/Olympus"}, "Unknown timezone"),
            ({"max_parallel": 0}, "max_parallel"),
            ({"check_timeout": -1}, "check_timeout"),
            ({"max_parallel": "four"}, "max_parallel must be a number"),
            ({"max_parallel": True}, "max_parallel must be a number"),
            ({"check_timeout": [10]}, "check_timeout must be a number"),
            ({"parallel": "sometimes"}, "parallel must be true or false"),
        ],
    )
    def test_invalid_values(self, config, message):
        with pytest.raises(ConfigError, match=message):
            Settings.from_sources(config, {})

    def test_string_values_are_converted(self):
        """Quoted numbers and booleans from a config file get their real types."""
        settings = Settings.from_sources(
            {"max_parallel": "4", "check_timeout": "10", "parallel": "yes", "verbose": "false"}, {}
        )

        assert settings.max_parallel == 4
        assert isinstance(settings.max_parallel, int)
        assert settings.check_timeout == 10.0
        assert isinstance(settings.check_timeout, float)
        assert settings.parallel is True
        assert settings.verbose is False

    def test_quoted_numbers_in_yaml_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text('max_parallel: "2"\ncheck_timeout: "1.5"\n')

        settings = Settings.from_sources(ConfigLoader.load(str(path)), {})

        assert (settings.max_parallel, settings.check_timeout) == (2, 1.5)
