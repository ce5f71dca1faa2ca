import pytest

from flag_engine.config import DEFAULT_SETTINGS, EngineSettings


def test_defaults():
    assert DEFAULT_SETTINGS.min_baseline_samples == 3
    assert DEFAULT_SETTINGS.turnover_max_minutes == 180.0
    assert DEFAULT_SETTINGS.storage_precision == 1
    assert DEFAULT_SETTINGS.default_timezone == "UTC"


def test_from_env_reads_overrides(monkeypatch):
    monkeypatch.setenv("FLAG_ENGINE_MIN_BASELINE_SAMPLES", "5")
    monkeypatch.setenv("FLAG_ENGINE_TURNOVER_MAX_MINUTES", "120")
    monkeypatch.setenv("FLAG_ENGINE_STORAGE_PRECISION", "2")
    monkeypatch.setenv("FLAG_ENGINE_TIMEZONE", "America/Denver")

    settings = EngineSettings.from_env()
    assert settings == EngineSettings(
        min_baseline_samples=5,
        turnover_max_minutes=120.0,
        storage_precision=2,
        default_timezone="America/Denver",
    )


def test_from_env_falls_back_on_empty_values(monkeypatch):
    for name in (
        "FLAG_ENGINE_MIN_BASELINE_SAMPLES",
        "FLAG_ENGINE_TURNOVER_MAX_MINUTES",
        "FLAG_ENGINE_STORAGE_PRECISION",
        "FLAG_ENGINE_TIMEZONE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FLAG_ENGINE_TIMEZONE", "")
    assert EngineSettings.from_env() == DEFAULT_SETTINGS


@pytest.mark.parametrize(
    "overrides",
    [
        {"min_baseline_samples": 1},
        {"turnover_max_minutes": 0},
        {"storage_precision": -1},
    ],
)
def test_invalid_settings_rejected(overrides):
    with pytest.raises(ValueError):
        EngineSettings(**overrides)
