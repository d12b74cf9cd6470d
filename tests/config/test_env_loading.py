import logging
import os

from charsmith.config_env import load_env
from charsmith.engine.config import EngineSettings, load_settings
from charsmith.logging import get_logger


def test_env_loads_dotenv(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("FOO=bar\nCHARSMITH_DEFAULT_SOURCE=from_env_file\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CHARSMITH_DEFAULT_SOURCE", "from_process")
    monkeypatch.setenv("FOO", "")
    monkeypatch.delenv("FOO")

    load_env()

    assert os.getenv("FOO") == "bar"
    assert os.getenv("CHARSMITH_DEFAULT_SOURCE") == "from_process"


def test_test_env_file_loaded_under_pytest(tmp_path, monkeypatch):
    (tmp_path / ".env.test").write_text("CHARSMITH_MAX_LEVEL=12\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    assert load_settings().max_level == 12


def test_local_env_wins_over_test_env(tmp_path, monkeypatch):
    (tmp_path / ".env.local").write_text("CHARSMITH_KEEP_LEGACY_COMBINED=no\n", encoding="utf-8")
    (tmp_path / ".env.test").write_text("CHARSMITH_KEEP_LEGACY_COMBINED=yes\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    assert load_settings().keep_legacy_combined_selections is False


def test_settings_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_settings() == EngineSettings()


def test_settings_from_process_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CHARSMITH_DEFAULT_SOURCE", " XPHB ")
    monkeypatch.setenv("CHARSMITH_KEEP_LEGACY_COMBINED", "0")
    monkeypatch.setenv("CHARSMITH_MAX_LEVEL", "lots")

    settings = load_settings()
    assert settings.default_source == "XPHB"
    assert settings.keep_legacy_combined_selections is False
    assert settings.max_level == 20


def test_logger_names():
    log = get_logger("charsmith.test")
    assert isinstance(log, logging.Logger)
    assert log.name == "charsmith.test"


def test_load_env_reports_files_in_order(tmp_path, monkeypatch):
    for name in (".env.test", ".env.local", ".env"):
        (tmp_path / name).write_text("", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    assert [p.name for p in load_env()] == [".env", ".env.local", ".env.test"]


def test_test_env_ignored_outside_pytest(tmp_path, monkeypatch):
    (tmp_path / ".env.test").write_text("", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PYTEST_CURRENT_TEST")

    assert load_env() == []


def test_log_level_from_env(monkeypatch):
    tree = logging.getLogger("charsmith")
    previous = tree.level
    try:
        monkeypatch.setenv("CHARSMITH_LOG_LEVEL", "debug")
        assert get_logger("charsmith.a").getEffectiveLevel() == logging.DEBUG
        monkeypatch.setenv("CHARSMITH_LOG_LEVEL", "chatty")
        assert get_logger("charsmith.b").getEffectiveLevel() == logging.INFO
    finally:
        tree.setLevel(previous)
