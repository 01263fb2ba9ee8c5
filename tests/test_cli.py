from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from typer.testing import CliRunner

import fr_db.cli as cli
import fr_db.logging as fr_logging
from fr_db.db import add_file, connect
from fr_db.repositories import ImageRepository, UserSettingsRepository

runner = CliRunner()


@pytest.fixture
def env(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("FR_DB_PATH", str(tmp_path / "db" / "fr.sqlite"))
    monkeypatch.setenv("FR_DATA_DIR", str(tmp_path / "users"))
    monkeypatch.setenv("FR_LOG_DIR", str(tmp_path / "_logs"))
    monkeypatch.setattr(fr_logging, "setup_logging", lambda s: tmp_path / "_logs" / "fr_db.log")
    return tmp_path


def _seed(db_path: Path) -> None:
    conn = connect(db_path)
    try:
        images = ImageRepository(conn)
        images.insert("alice", 900001, 1)
        kept_file = add_file(conn, "alice", "files/Photos/a.jpg")
        images.insert("alice", kept_file, 1)
        conn.commit()
    finally:
        conn.close()


def test_init_creates_db_and_users(env):
    res = runner.invoke(cli.app, ["init", "--user", "alice", "--user", "bob"])
    assert res.exit_code == 0, res.output

    conn = connect(env / "db" / "fr.sqlite")
    try:
        users = [r[0] for r in conn.execute("SELECT uid FROM users ORDER BY uid")]
    finally:
        conn.close()
    assert users == ["alice", "bob"]


def test_request_scan_then_stale_scan(env):
    assert runner.invoke(cli.app, ["init", "--user", "alice"]).exit_code == 0
    _seed(env / "db" / "fr.sqlite")

    res = runner.invoke(cli.app, ["stale-scan"])
    assert res.exit_code == 0, res.output
    assert "Removed: 0" in res.output

    res = runner.invoke(cli.app, ["request-scan", "alice"])
    assert res.exit_code == 0, res.output

    res = runner.invoke(cli.app, ["stale-scan", "--user", "alice"])
    assert res.exit_code == 0, res.output
    assert "Removed: 1" in res.output
    assert "complete" in res.output

    res = runner.invoke(cli.app, ["status", "--json"])
    assert res.exit_code == 0, res.output
    payload = json.loads(res.output)
    assert payload["users"] == [
        {"user": "alice", "images": 1, "needs_stale_scan": False, "last_checked": 0}
    ]


def test_stale_scan_sync_mode_ignores_flag(env):
    assert runner.invoke(cli.app, ["init", "--user", "alice"]).exit_code == 0
    _seed(env / "db" / "fr.sqlite")

    res = runner.invoke(cli.app, ["stale-scan", "--sync"])
    assert res.exit_code == 0, res.output
    assert "Removed: 1" in res.output


def test_stale_scan_failure_exits_nonzero(env, monkeypatch):
    import sqlite3

    assert runner.invoke(cli.app, ["init", "--user", "alice"]).exit_code == 0
    _seed(env / "db" / "fr.sqlite")
    conn = connect(env / "db" / "fr.sqlite")
    UserSettingsRepository(conn).set_need_remove_stale_images(True, "alice")
    conn.close()

    def boom(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(ImageRepository, "find_images_after", boom)
    res = runner.invoke(cli.app, ["stale-scan"])

    assert res.exit_code == 1
    assert "disk I/O error" in res.output


def test_stale_scan_reports_unexpected_errors(env, monkeypatch):
    assert runner.invoke(cli.app, ["init", "--user", "alice"]).exit_code == 0
    _seed(env / "db" / "fr.sqlite")
    conn = connect(env / "db" / "fr.sqlite")
    UserSettingsRepository(conn).set_need_remove_stale_images(True, "alice")
    conn.close()

    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(ImageRepository, "find_images_after", boom)
    res = runner.invoke(cli.app, ["stale-scan"])

    assert res.exit_code == 1
    assert "boom" in res.output


def test_status_table(env):
    assert runner.invoke(cli.app, ["init", "--user", "alice"]).exit_code == 0
    res = runner.invoke(cli.app, ["status"])
    assert res.exit_code == 0, res.output
    assert "alice" in res.output


def test_setup_logging_writes_rotating_file(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level

    class _S:
        FR_LOG_DIR = tmp_path / "logs"
        FR_LOG_LEVEL = "debug"
        FR_LOG_BACKUP_COUNT = 3

    try:
        log_file = fr_logging.setup_logging(_S())
        logging.getLogger("fr_db.test").debug("hello from test")
        for h in root.handlers:
            h.flush()
        assert log_file == tmp_path / "logs" / "fr_db.log"
        assert "hello from test" in log_file.read_text(encoding="utf-8")
        assert root.level == logging.DEBUG
    finally:
        for h in root.handlers:
            h.close()
        root.handlers = saved_handlers
        root.setLevel(saved_level)


def test_relative_log_dir_resolves_against_working_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    class _S:
        FR_LOG_DIR = Path("_logs")

    assert fr_logging._resolve_log_dir(_S()) == tmp_path / "_logs"

    _S.FR_LOG_DIR = tmp_path / "elsewhere"
    assert fr_logging._resolve_log_dir(_S()) == tmp_path / "elsewhere"
