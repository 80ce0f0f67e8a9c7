import json
import logging

import pytest

from settings import (
	ConfigurationError,
	Settings,
	check_provider_key,
	is_usable_api_key,
	load_settings,
	persist_api_key,
	safe_summary,
	settings_file_path,
	write_json_atomic,
)


def write_settings_file(values: dict) -> None:
	settings_file_path().write_text(json.dumps(values))


def test_defaults():
	settings = Settings(_env_file=None)
	assert settings.environment == "development"
	assert settings.alpha_vantage_api_url == "https://www.alphavantage.co/query"
	assert settings.api_request_ceiling == 20
	assert settings.api_min_interval == 3600
	assert settings.api_request_window is None
	assert settings.cache_staleness == 86_400
	assert settings.base_price == 1.1659
	assert (settings.min_price, settings.max_price) == (1.15, 1.18)
	assert [(b.start_hour, b.end_hour, b.multiplier) for b in settings.session_bands] == [
		(8, 16, 1.5),
		(17, 21, 1.3),
	]


def test_precedence_override_then_env_then_file_then_default(monkeypatch):
	write_settings_file({"alpha_vantage_api_key": "FILEKEY123", "api_min_interval": 120})
	monkeypatch.setenv("ALPHA_VANTAGE_API_KEY", "ENVKEY1234")

	assert Settings(_env_file=None, alpha_vantage_api_key="OVERRIDE99").alpha_vantage_api_key == "OVERRIDE99"
	assert Settings(_env_file=None).alpha_vantage_api_key == "ENVKEY1234"

	monkeypatch.delenv("ALPHA_VANTAGE_API_KEY")
	settings = Settings(_env_file=None)
	assert settings.alpha_vantage_api_key == "FILEKEY123"
	assert settings.api_min_interval == 120
	assert settings.api_request_ceiling == 20


def test_env_values_are_parsed(monkeypatch):
	monkeypatch.setenv("API_REQUEST_CEILING", "5")
	monkeypatch.setenv("API_REQUEST_WINDOW", "86400")
	monkeypatch.setenv("SESSION_BANDS", '[{"start_hour": 0, "end_hour": 6, "multiplier": 2.0}]')

	settings = Settings(_env_file=None)

	assert settings.api_request_ceiling == 5
	assert settings.api_request_window == 86400
	assert settings.session_bands[0].multiplier == 2.0


@pytest.mark.parametrize(
	"overrides, fragment",
	[
		({"alpha_vantage_api_url": "http://www.alphavantage.co/query"}, "HTTPS"),
		({"base_price": 1.30}, "base_price"),
		({"min_price": 1.2, "max_price": 1.1}, "min_price"),
		({"api_timeout": 120}, "api_timeout"),
		({"cache_strategy": "redis"}, "cache_strategy"),
		({"log_level": "chatty"}, "log level"),
	],
)
def test_invalid_values_raise_configuration_error(overrides, fragment):
	with pytest.raises(ConfigurationError, match=fragment):
		load_settings(_env_file=None, **overrides)


@pytest.mark.parametrize("url", ["https://[::1", "https://", "https://a\x00b.example/query", "not a url"])
def test_unparseable_api_url_is_rejected(url):
	with pytest.raises(ConfigurationError, match="alpha_vantage_api_url"):
		load_settings(_env_file=None, alpha_vantage_api_url=url)


def test_production_without_key_fails_fast():
	with pytest.raises(ConfigurationError, match="ALPHA_VANTAGE_API_KEY"):
		load_settings(_env_file=None, environment="production")


@pytest.mark.parametrize("key", ["", "demo", "your_api_key_here", "YOUR_ALPHA_VANTAGE_API_KEY", "short"])
def test_production_rejects_placeholder_keys(key):
	with pytest.raises(ConfigurationError):
		load_settings(_env_file=None, environment="production", alpha_vantage_api_key=key)


def test_production_with_real_key_loads():
	settings = load_settings(_env_file=None, environment="production", alpha_vantage_api_key="ABCD1234EFGH")
	assert settings.is_production
	assert settings.has_api_key


def test_development_without_key_warns(caplog):
	with caplog.at_level(logging.WARNING, logger="settings"):
		settings = load_settings(_env_file=None, environment="development")
	assert settings.has_api_key is False
	assert "synthetic" in caplog.text


def test_check_provider_key_applies_to_prebuilt_settings(caplog):
	with pytest.raises(ConfigurationError, match="ALPHA_VANTAGE_API_KEY"):
		check_provider_key(Settings(_env_file=None, environment="production"))

	with caplog.at_level(logging.WARNING, logger="settings"):
		check_provider_key(Settings(_env_file=None, environment="staging", alpha_vantage_api_key="demo"))
	assert "synthetic" in caplog.text

	check_provider_key(Settings(_env_file=None, environment="production", alpha_vantage_api_key="ABCD1234EFGH"))


@pytest.mark.parametrize(
	"key, usable",
	[(None, False), ("", False), ("demo", False), ("DEMO_KEY", False), ("abc", False), ("  ", False), ("ABCD1234", True)],
)
def test_is_usable_api_key(key, usable):
	assert is_usable_api_key(key) is usable


def test_safe_summary_hides_the_key():
	settings = Settings(_env_file=None, alpha_vantage_api_key="SECRETKEY999")
	summary = safe_summary(settings)
	assert summary["has_api_key"] is True
	assert summary["api_key_type"] == "configured"
	assert "SECRETKEY999" not in json.dumps(summary)


def test_persist_api_key_is_picked_up_on_next_load():
	settings = load_settings(_env_file=None)

	updated = persist_api_key(settings, " NEWKEY12345 ")

	assert updated.alpha_vantage_api_key == "NEWKEY12345"
	assert json.loads(settings_file_path().read_text())["alpha_vantage_api_key"] == "NEWKEY12345"
	assert load_settings(_env_file=None).alpha_vantage_api_key == "NEWKEY12345"


def test_persist_api_key_keeps_other_stored_values():
	write_settings_file({"api_min_interval": 60})
	persist_api_key(Settings(_env_file=None), "NEWKEY12345")
	stored = json.loads(settings_file_path().read_text())
	assert stored == {"api_min_interval": 60, "alpha_vantage_api_key": "NEWKEY12345"}


def test_persist_api_key_replaces_the_file_in_one_step():
	write_settings_file({"api_min_interval": 60})
	persist_api_key(Settings(_env_file=None), "NEWKEY12345")
	path = settings_file_path()
	assert sorted(p.name for p in path.parent.iterdir()) == [path.name]
	assert json.loads(path.read_text())["alpha_vantage_api_key"] == "NEWKEY12345"


def test_write_json_atomic_creates_parent_and_overwrites(tmp_path):
	path = tmp_path / "nested" / "doc.json"
	write_json_atomic(path, {"a": 1})
	write_json_atomic(path, {"b": 2})
	assert json.loads(path.read_text()) == {"b": 2}
	assert not path.with_name("doc.json.tmp").exists()


def test_persist_api_key_rejects_placeholders():
	with pytest.raises(ConfigurationError):
		persist_api_key(Settings(_env_file=None), "your_api_key_here")
	assert not settings_file_path().exists()
