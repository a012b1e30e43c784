# tests/test_config.py

from gridlens.config import IESO_BASE_URL, Settings


_VARS = (
    "GRIDLENS_DEMAND_URL", "GRIDLENS_SOURCE_TIMEOUT", "GRIDLENS_MAX_ATTEMPTS",
    "GRIDLENS_LIVE_INTERVAL", "GRIDLENS_TIMEZONE", "LOG_LEVEL",
)


def _clear(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_environment(monkeypatch):
    _clear(monkeypatch)
    s = Settings.from_env()
    assert s.demand_url.startswith(IESO_BASE_URL)
    assert s.source_timeout == 10.0
    assert s.max_attempts == 2
    assert s.live_interval == 300.0
    assert s.synthetic_interval == 5.0
    assert s.timezone.key == "America/Toronto"
    assert s.log_level == "INFO"


def test_environment_overrides(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("GRIDLENS_DEMAND_URL", "https://mirror.test/demand.csv")
    monkeypatch.setenv("GRIDLENS_SOURCE_TIMEOUT", "4.5")
    monkeypatch.setenv("GRIDLENS_LIVE_INTERVAL", "60")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    s = Settings.from_env()
    assert s.demand_url == "https://mirror.test/demand.csv"
    assert s.source_timeout == 4.5
    assert s.live_interval == 60.0
    assert s.log_level == "DEBUG"


def test_malformed_numbers_fall_back(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("GRIDLENS_SOURCE_TIMEOUT", "soon")
    monkeypatch.setenv("GRIDLENS_MAX_ATTEMPTS", "0")

    s = Settings.from_env()
    assert s.source_timeout == 10.0
    assert s.max_attempts == 1
