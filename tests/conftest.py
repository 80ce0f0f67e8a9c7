"""Shared fixtures: a controllable clock, isolated settings, a fake provider."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from settings import Settings

API_KEY = "TESTKEY12345"

PROVIDER_ENV_VARS = (
	"ENVIRONMENT",
	"ALPHA_VANTAGE_API_KEY",
	"ALPHA_VANTAGE_API_URL",
	"API_TIMEOUT",
	"API_REQUEST_CEILING",
	"API_MIN_INTERVAL",
	"API_REQUEST_WINDOW",
	"CACHE_STRATEGY",
	"CACHE_PATH",
	"CACHE_STALENESS",
	"SESSION_BANDS",
	"LOG_LEVEL",
)


class FakeClock:
	def __init__(self, start: datetime = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)):
		self.now = start

	def __call__(self) -> datetime:
		return self.now

	def advance(self, **kwargs) -> None:
		self.now += timedelta(**kwargs)


def exchange_rate_payload(rate: str) -> dict:
	return {
		"Realtime Currency Exchange Rate": {
			"1. From_Currency Code": "EUR",
			"3. To_Currency Code": "USD",
			"5. Exchange Rate": rate,
			"6. Last Refreshed": "2024-01-15 10:00:01",
		}
	}


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
	for var in PROVIDER_ENV_VARS:
		monkeypatch.delenv(var, raising=False)
	monkeypatch.setenv("SETTINGS_FILE", str(tmp_path / "fx_settings.json"))
	monkeypatch.chdir(tmp_path)


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def make_settings():
	def _make(**overrides) -> Settings:
		values = {
			"_env_file": None,
			"environment": "test",
			"alpha_vantage_api_key": API_KEY,
			"cache_strategy": "memory",
		}
		values.update(overrides)
		return Settings(**values)

	return _make


class FakeProvider:
	"""Records requests and answers them with ``handler``."""

	def __init__(self, handler):
		self.handler = handler
		self.requests = []

	def __call__(self, request: httpx.Request) -> httpx.Response:
		self.requests.append(request)
		return self.handler(request)

	def client(self) -> httpx.AsyncClient:
		return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def live_provider():
	return FakeProvider(lambda request: httpx.Response(200, json=exchange_rate_payload("1.16600000")))
