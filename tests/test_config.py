import importlib

import pytest

from showreco import config


def test_env_overrides_and_validation(monkeypatch):
    monkeypatch.setenv("SHOWRECO_MIN_RATERS", "4")
    monkeypatch.setenv("SHOWRECO_MIN_SHARED", "0")  # should clamp to min
    monkeypatch.setenv("SHOWRECO_HTTP_TIMEOUT", "2.5")

    cfg = importlib.reload(config)

    assert cfg.MIN_RATERS_PER_SHOW == 4
    assert cfg.MIN_SHARED_SHOWS == 1
    assert cfg.HTTP_TIMEOUT == 2.5

    monkeypatch.delenv("SHOWRECO_MIN_RATERS")
    monkeypatch.delenv("SHOWRECO_MIN_SHARED")
    monkeypatch.delenv("SHOWRECO_HTTP_TIMEOUT")
    importlib.reload(config)


def test_invalid_env_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("SHOWRECO_MIN_RATERS", "many")
    monkeypatch.setenv("SHOWRECO_HTTP_TIMEOUT", "oops")

    cfg = importlib.reload(config)

    assert cfg.MIN_RATERS_PER_SHOW == 2
    assert cfg.HTTP_TIMEOUT == 15.0

    monkeypatch.delenv("SHOWRECO_MIN_RATERS")
    monkeypatch.delenv("SHOWRECO_HTTP_TIMEOUT")
    importlib.reload(config)


def test_db_path_respects_env(fresh_config, tmp_path):
    assert fresh_config.DB_PATH == tmp_path / "test.db"


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv("SHOWRECO_DEV_MODE", "true")
    monkeypatch.setenv("SHOWRECO_DEV_USER_ID", "dev-42")
    monkeypatch.setenv("TMDB_API_KEY", "secret")

    settings = config.load_settings()

    assert settings.dev_mode is True
    assert settings.dev_user_id == "dev-42"
    assert settings.tmdb_api_key == "secret"


def test_resolve_user_id():
    live = config.Settings(dev_mode=False, dev_user_id="dev")
    dev = config.Settings(dev_mode=True, dev_user_id="dev")

    assert config.resolve_user_id(live, "alice") == "alice"
    assert config.resolve_user_id(dev, "alice") == "alice"
    assert config.resolve_user_id(dev) == "dev"
    with pytest.raises(config.NotAuthenticatedError, match="User not authenticated"):
        config.resolve_user_id(live)
