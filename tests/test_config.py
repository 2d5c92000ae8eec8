from pathlib import Path

import pytest

from pipekit import config


@pytest.fixture
def dirs(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "FILES_DIR", tmp_path / "files")
    monkeypatch.setattr(config, "STATE_DIR", tmp_path / "state")
    monkeypatch.setattr(config, "LOG_DIR", tmp_path / "logs")
    monkeypatch.setattr(config, "CACHE_DIR", tmp_path / "cache")
    return tmp_path


def test_parse_rotate_env_empty_gives_default(monkeypatch):
    monkeypatch.setenv("PIPE_TEST_ROTATE", "")
    assert config.parse_rotate_env("PIPE_TEST_ROTATE", 10) == 10


def test_parse_rotate_env_unset_gives_default(monkeypatch):
    monkeypatch.delenv("PIPE_TEST_ROTATE_UNSET", raising=False)
    assert config.parse_rotate_env("PIPE_TEST_ROTATE_UNSET", 5) == 5


def test_parse_rotate_env_zero_disables(monkeypatch):
    monkeypatch.setenv("PIPE_TEST_ROTATE", "0")
    assert config.parse_rotate_env("PIPE_TEST_ROTATE", 10) == 0


def test_parse_rotate_env_custom_value(monkeypatch):
    monkeypatch.setenv("PIPE_TEST_ROTATE", "25")
    assert config.parse_rotate_env("PIPE_TEST_ROTATE", 10) == 25


def test_parse_rotate_env_plus_sign(monkeypatch):
    monkeypatch.setenv("PIPE_TEST_ROTATE", "+7")
    assert config.parse_rotate_env("PIPE_TEST_ROTATE", 10) == 7


def test_parse_rotate_env_negative_gives_default(monkeypatch):
    monkeypatch.setenv("PIPE_TEST_ROTATE", "-3")
    assert config.parse_rotate_env("PIPE_TEST_ROTATE", 10) == 10


def test_parse_rotate_env_invalid_gives_default(monkeypatch):
    monkeypatch.setenv("PIPE_TEST_ROTATE", "abc")
    assert config.parse_rotate_env("PIPE_TEST_ROTATE", 10) == 10


def test_parse_rotate_env_whitespace_is_invalid(monkeypatch):
    monkeypatch.setenv("PIPE_TEST_ROTATE", " 4")
    assert config.parse_rotate_env("PIPE_TEST_ROTATE", 10) == 10


def test_ensure_dirs_creates_all(dirs):
    result = config.ensure_dirs("deploy")

    assert result is None
    created = [sub for sub in ("files", "state/deploy", "logs", "cache") if (dirs / sub).is_dir()]
    assert created == ["files", "state/deploy", "logs", "cache"]


def test_ensure_dirs_is_idempotent(dirs):
    first = config.ensure_dirs("p")
    second = config.ensure_dirs("p")

    assert first is None and second is None
    assert sorted(p.name for p in Path(dirs).iterdir()) == ["cache", "files", "logs", "state"]
    assert [p.name for p in (dirs / "state").iterdir()] == ["p"]