"""
Tests for stock_config: YAML loading, validation and environment overrides.
"""

import pytest
import yaml

from stock_config import DEFAULT_CONFIG_PATH, get_active_config
from stock_config.loader import compute_checksum, parse_config

VALID = {
    "config_id": "test",
    "version": 2,
    "database": {"url": "sqlite://"},
    "adjuster": {"max_attempts": 5, "backoff_base_seconds": 0},
    "reporting": {"low_stock_top_n": 3, "default_page_size": 10, "max_page_size": 20},
    "logging": {"level": "debug"},
}


def write_config(tmp_path, data):
    path = tmp_path / "stock.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestGetActiveConfig:
    def test_packaged_default(self, monkeypatch):
        monkeypatch.delenv("STOCK_CONFIG_PATH", raising=False)
        monkeypatch.delenv("STOCK_DATABASE_URL", raising=False)

        config = get_active_config()

        assert config.config_id == "stock-default"
        assert config.adjuster.max_attempts == 3
        assert config.reporting.low_stock_top_n == 5
        assert config.database.url == "sqlite:///stock.db"
        assert DEFAULT_CONFIG_PATH.exists()

    def test_explicit_path(self, tmp_path, monkeypatch):
        monkeypatch.delenv("STOCK_DATABASE_URL", raising=False)
        config = get_active_config(write_config(tmp_path, VALID))

        assert config.config_id == "test"
        assert config.version == 2
        assert config.adjuster.max_attempts == 5
        assert config.adjuster.backoff_base_seconds == 0.0
        assert config.reporting.max_page_size == 20
        assert config.logging.level == "DEBUG"

    def test_path_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STOCK_CONFIG_PATH", str(write_config(tmp_path, VALID)))
        assert get_active_config().config_id == "test"

    def test_database_url_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STOCK_DATABASE_URL", "postgresql://stock@localhost/stock")
        config = get_active_config(write_config(tmp_path, VALID))
        assert config.database.url == "postgresql://stock@localhost/stock"

    def test_trace_is_logged(self, tmp_path, captured_logs):
        config = get_active_config(write_config(tmp_path, VALID))
        trace = next(r for r in captured_logs() if r["message"] == "STOCK_CONFIG_TRACE")
        assert trace["config_id"] == "test"
        assert trace["checksum"] == config.checksum

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


class TestParseConfig:
    def test_checksum_is_deterministic(self):
        reordered = dict(reversed(list(VALID.items())))
        assert compute_checksum(VALID) == compute_checksum(reordered)
        assert parse_config(VALID).checksum == compute_checksum(VALID)

    def test_defaults_for_optional_sections(self):
        config = parse_config({"config_id": "min", "version": 1, "database": {"url": "sqlite://"}})
        assert config.adjuster.max_attempts == 3
        assert config.reporting.default_page_size == 50
        assert config.logging.level == "INFO"

    @pytest.mark.parametrize("missing", ["config_id", "version", "database"])
    def test_required_keys(self, missing):
        data = {k: v for k, v in VALID.items() if k != missing}
        with pytest.raises(KeyError):
            parse_config(data)

    @pytest.mark.parametrize(
        "section,key,value",
        [
            ("adjuster", "max_attempts", 0),
            ("adjuster", "max_attempts", True),
            ("adjuster", "backoff_base_seconds", -1),
            ("reporting", "low_stock_top_n", "five"),
            ("reporting", "default_page_size", 50),
            ("logging", "level", "LOUD"),
        ],
    )
    def test_out_of_range_values(self, section, key, value):
        data = {**VALID, section: {**VALID[section], key: value}}
        with pytest.raises(ValueError):
            parse_config(data)
