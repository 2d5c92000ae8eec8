from datetime import datetime, timedelta, timezone

import pytest

from pipekit import cache, config
from pipekit.cache import CacheError, Entry, SubEntry


@pytest.fixture
def cache_dir(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "CACHE_DIR", tmp_path)
    return tmp_path


def _now():
    return datetime.now(timezone.utc)


def test_save_load_roundtrip(cache_dir):
    now = _now().replace(microsecond=0)
    exp = now + timedelta(hours=1)
    entry = Entry(
        step_id="build",
        cached_at=now,
        expires_at=exp,
        exit_code=0,
        output="Build complete\n",
        sensitive=False,
        run_type="single",
    )
    cache.save(entry)

    loaded = cache.load("build")
    assert loaded is not None
    assert loaded.step_id == "build"
    assert loaded.output == "Build complete\n"
    assert loaded.run_type == "single"
    assert loaded.expires_at is not None
    assert loaded.expires_at.replace(microsecond=0) == exp
    assert loaded.cached_at == now


def test_save_load_with_sub_outputs(cache_dir):
    entry = Entry(
        step_id="deploy",
        cached_at=_now(),
        exit_code=0,
        run_type="subruns",
        sub_outputs=[
            SubEntry(id="prod", output="deployed to prod", exit_code=0),
            SubEntry(id="staging", output="deployed to staging", sensitive=True, exit_code=0),
        ],
    )
    cache.save(entry)

    loaded = cache.load("deploy")
    assert len(loaded.sub_outputs) == 2
    assert loaded.sub_outputs[0].id == "prod"
    assert loaded.sub_outputs[1].sensitive is True
    assert loaded.sub_outputs[1].output == "deployed to staging"


def test_load_missing(cache_dir):
    assert cache.load("nonexistent") is None


def test_load_corrupt_raises(cache_dir):
    (cache_dir / "bad.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(CacheError, match="parsing cache"):
        cache.load("bad")


def test_is_valid_no_expiry():
    entry = Entry(step_id="test", cached_at=_now())
    assert cache.is_valid(entry, _now()) is True


def test_is_valid_not_expired():
    entry = Entry(step_id="test", cached_at=_now(), expires_at=_now() + timedelta(hours=1))
    assert cache.is_valid(entry, _now()) is True


def test_is_valid_expired():
    entry = Entry(step_id="test", cached_at=_now(), expires_at=_now() - timedelta(hours=1))
    assert cache.is_valid(entry, _now()) is False


def test_is_valid_none():
    assert cache.is_valid(None, _now()) is False


def test_clear(cache_dir):
    cache.save(Entry(step_id="test", cached_at=_now(), run_type="single"))
    cache.clear("test")
    assert cache.load("test") is None


def test_clear_nonexistent(cache_dir):
    assert cache.clear("nonexistent") is None
    assert cache.load("nonexistent") is None
    assert list(cache_dir.iterdir()) == []


def test_clear_all(cache_dir):
    for step_id in ("a", "b", "c"):
        cache.save(Entry(step_id=step_id, cached_at=_now(), run_type="single"))
    (cache_dir / "keep.txt").write_text("x", encoding="utf-8")

    cache.clear_all()

    assert cache.list_entries() == []
    assert (cache_dir / "keep.txt").exists()


def test_clear_all_missing_dir(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "CACHE_DIR", tmp_path / "absent")
    assert cache.clear_all() is None
    assert not (tmp_path / "absent").exists()


def test_list(cache_dir):
    for step_id in ("x", "y"):
        cache.save(Entry(step_id=step_id, cached_at=_now(), run_type="single"))
    entries = cache.list_entries()
    assert sorted(e.step_id for e in entries) == ["x", "y"]


def test_list_empty_dir(cache_dir):
    assert cache.list_entries() == []


def test_list_skips_corrupt(cache_dir):
    cache.save(Entry(step_id="good", cached_at=_now(), run_type="single"))
    (cache_dir / "broken.json").write_text("[[[", encoding="utf-8")
    assert [e.step_id for e in cache.list_entries()] == ["good"]


def test_save_no_tmp_file_remains(cache_dir):
    cache.save(Entry(step_id="clean", cached_at=_now(), run_type="single"))
    assert cache.load("clean").step_id == "clean"
    assert [p.suffix for p in cache_dir.iterdir()] == [".json"]


def test_save_sensitive_no_output(cache_dir):
    cache.save(Entry(step_id="secret", cached_at=_now(), exit_code=0, sensitive=True, run_type="single"))
    loaded = cache.load("secret")
    assert loaded.output == ""
    assert loaded.sensitive is True


def test_save_into_missing_dir_raises(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "CACHE_DIR", tmp_path / "missing")
    with pytest.raises(CacheError, match="writing cache tmp"):
        cache.save(Entry(step_id="x", cached_at=_now()))


def test_to_dict_omits_empty_fields():
    entry = Entry(step_id="s", cached_at=datetime(2026, 2, 17, 10, 0, tzinfo=timezone.utc), run_type="single")
    data = entry.to_dict()
    assert list(data) == ["step_id", "cached_at", "exit_code", "sensitive", "run_type"]
    assert data["cached_at"] == "2026-02-17T10:00:00+00:00"


def test_from_dict_accepts_nanosecond_timestamps():
    entry = Entry.from_dict(
        {"step_id": "s", "cached_at": "2026-02-17T10:00:00.123456789Z", "exit_code": 2, "run_type": "strings"}
    )
    assert entry.cached_at == datetime(2026, 2, 17, 10, 0, 0, 123456, tzinfo=timezone.utc)
    assert entry.exit_code == 2
    assert entry.expires_at is None


def test_parse_expiry_empty():
    assert cache.parse_expiry("", _now()) is None


UTC_10 = datetime(2026, 2, 17, 10, 0, 0, tzinfo=timezone.utc)


def test_parse_expiry_duration_hours():
    assert cache.parse_expiry("1h", UTC_10) == UTC_10 + timedelta(hours=1)


def test_parse_expiry_duration_minutes():
    assert cache.parse_expiry("30m", UTC_10) == UTC_10 + timedelta(minutes=30)


def test_parse_expiry_duration_seconds():
    assert cache.parse_expiry("30s", UTC_10) == UTC_10 + timedelta(seconds=30)


def test_parse_expiry_absolute_utc_future():
    assert cache.parse_expiry("18:10 UTC", UTC_10) == datetime(2026, 2, 17, 18, 10, tzinfo=timezone.utc)


def test_parse_expiry_absolute_utc_past():
    cached_at = datetime(2026, 2, 17, 20, 0, tzinfo=timezone.utc)
    assert cache.parse_expiry("18:10 UTC", cached_at) == datetime(2026, 2, 18, 18, 10, tzinfo=timezone.utc)


def test_parse_expiry_absolute_local():
    zone = timezone(timedelta(hours=5))
    cached_at = datetime(2026, 2, 17, 10, 0, tzinfo=zone)
    assert cache.parse_expiry("15:00", cached_at) == datetime(2026, 2, 17, 15, 0, tzinfo=zone)


def test_parse_expiry_absolute_local_past():
    zone = timezone(timedelta(hours=5))
    cached_at = datetime(2026, 2, 17, 16, 0, tzinfo=zone)
    assert cache.parse_expiry("15:00", cached_at) == datetime(2026, 2, 18, 15, 0, tzinfo=zone)


def test_parse_expiry_same_instant_pushes_to_tomorrow():
    cached_at = datetime(2026, 2, 17, 18, 10, tzinfo=timezone.utc)
    assert cache.parse_expiry("18:10 UTC", cached_at) == datetime(2026, 2, 18, 18, 10, tzinfo=timezone.utc)


def test_parse_expiry_invalid():
    with pytest.raises(ValueError, match="invalid expiry"):
        cache.parse_expiry("not-a-time", _now())


def test_parse_expiry_hour_out_of_range():
    with pytest.raises(ValueError):
        cache.parse_expiry("25:00", UTC_10)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5h", timedelta(minutes=90)),
        ("-30s", timedelta(seconds=-30)),
        ("0", timedelta(0)),
        ("250ms", timedelta(milliseconds=250)),
        ("2us", timedelta(microseconds=2)),
    ],
)
def test_parse_duration_values(text, expected):
    assert cache.parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "5", "abc", "1x", ".s", "-", "18:10"])
def test_parse_duration_invalid(text):
    with pytest.raises(ValueError):
        cache.parse_duration(text)