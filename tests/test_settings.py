from __future__ import annotations

import pytest
from pydantic import ValidationError

from fr_db.settings import Settings, load_settings


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    s = Settings()
    assert s.FR_STALE_BATCH_SIZE == 1000
    assert s.FR_STALE_YIELD_EVERY == 200
    assert s.FR_ALLOWED_MOUNT_TYPES == ["home"]
    assert s.FR_JOB_TIMEOUT_SEC == 0


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("FR_STALE_BATCH_SIZE", "250")
    monkeypatch.setenv("FR_ALLOWED_MOUNT_TYPES", '["home", "group"]')
    monkeypatch.setenv("FR_DB_PATH", str(tmp_path / "nested" / "x.sqlite"))

    s = load_settings()

    assert s.FR_STALE_BATCH_SIZE == 250
    assert s.FR_ALLOWED_MOUNT_TYPES == ["home", "group"]
    assert (tmp_path / "nested").is_dir()


@pytest.mark.parametrize("field", ["FR_STALE_BATCH_SIZE", "FR_STALE_YIELD_EVERY"])
def test_rejects_non_positive_sizes(field):
    with pytest.raises(ValidationError):
        Settings(**{field: 0})


def test_rejects_negative_timeout():
    with pytest.raises(ValidationError):
        Settings(FR_JOB_TIMEOUT_SEC=-1)


def test_mount_types_accept_comma_separated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("FR_DB_PATH", str(tmp_path / "x.sqlite"))
    monkeypatch.setenv("FR_ALLOWED_MOUNT_TYPES", "home, group")

    assert load_settings().FR_ALLOWED_MOUNT_TYPES == ["home", "group"]
