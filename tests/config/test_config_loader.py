"""Tests for lease_config: YAML loading, validation and the active-config cache."""

import pytest
import yaml

from lease_config import (
    DATABASE_URL_ENV,
    BillingConfig,
    LeaseCoreConfig,
    get_active_config,
    load_config,
    reset_active_config,
)
from lease_config.loader import DEFAULTS_PATH, parse_config


def _write(tmp_path, document) -> str:
    path = tmp_path / "lease_core.yaml"
    path.write_text(yaml.safe_dump(document))
    return str(path)


@pytest.fixture(autouse=True)
def _fresh_active_config():
    reset_active_config()
    yield
    reset_active_config()


class TestDefaults:

    def test_packaged_defaults_match_dataclass_defaults(self):
        config = load_config(environ={})
        assert config == LeaseCoreConfig()
        assert config.billing.default_due_day == 5
        assert config.billing.invoice_number_prefix == "INV"

    def test_defaults_file_ships_with_package(self):
        assert DEFAULTS_PATH.name == "defaults.yaml"
        assert DEFAULTS_PATH.exists()

    def test_empty_document_is_all_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path, environ={}) == LeaseCoreConfig()


class TestLoadFromFile:

    def test_partial_sections_keep_other_defaults(self, tmp_path):
        path = _write(tmp_path, {"billing": {"default_due_day": 10, "invoice_number_prefix": "RNT"}})

        config = load_config(path, environ={})

        assert config.billing == BillingConfig(default_due_day=10, invoice_number_prefix="RNT")
        assert config.database == LeaseCoreConfig().database

    def test_logging_level_normalized(self, tmp_path):
        path = _write(tmp_path, {"logging": {"level": "debug"}})
        assert load_config(path, environ={}).logging.level == "DEBUG"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", environ={})

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path, environ={})


class TestValidation:

    def test_unknown_section(self):
        with pytest.raises(ValueError, match="unknown configuration sections"):
            parse_config({"billling": {}})

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="unknown keys"):
            parse_config({"billing": {"due_day": 5}})

    @pytest.mark.parametrize("due_day", [0, 32, "5", True])
    def test_due_day_range(self, due_day):
        with pytest.raises(ValueError, match="billing.default_due_day"):
            parse_config({"billing": {"default_due_day": due_day}})

    def test_prefix_must_be_alphanumeric(self):
        with pytest.raises(ValueError, match="invoice_number_prefix"):
            parse_config({"billing": {"invoice_number_prefix": "IN-V"}})

    def test_pool_size_positive(self):
        with pytest.raises(ValueError, match="database.pool_size"):
            parse_config({"database": {"pool_size": 0}})

    def test_echo_must_be_boolean(self):
        with pytest.raises(ValueError, match="database.echo"):
            parse_config({"database": {"echo": "yes"}})

    def test_unknown_log_level(self):
        with pytest.raises(ValueError, match="logging.level"):
            parse_config({"logging": {"level": "CHATTY"}})

    def test_section_must_be_mapping(self):
        with pytest.raises(ValueError, match="payments"):
            parse_config({"payments": [1, 2]})


class TestEnvironmentOverride:

    def test_database_url_override(self, tmp_path):
        path = _write(tmp_path, {"database": {"url": "postgresql://file/db", "pool_size": 3}})

        config = load_config(path, environ={DATABASE_URL_ENV: "sqlite:///override.db"})

        assert config.database.url == "sqlite:///override.db"
        assert config.database.pool_size == 3

    def test_empty_override_ignored(self):
        config = load_config(environ={DATABASE_URL_ENV: ""})
        assert config.database.url == LeaseCoreConfig().database.url


class TestActiveConfig:

    def test_cached_between_calls(self):
        assert get_active_config() is get_active_config()

    def test_explicit_path_replaces_cache(self, tmp_path):
        first = get_active_config()
        path = _write(tmp_path, {"billing": {"default_due_day": 20}})

        reloaded = get_active_config(path)

        assert reloaded is not first
        assert get_active_config().billing.default_due_day == 20

    def test_reset_drops_cache(self, tmp_path):
        get_active_config(_write(tmp_path, {"billing": {"default_due_day": 20}}))
        reset_active_config()
        assert get_active_config().billing.default_due_day == 5
