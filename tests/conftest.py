from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_path() -> None:
    # When running via the venv's pytest entrypoint, the CWD is not guaranteed to
    # be on sys.path. Ensure the repository root (containing `fr_db/`) is importable.
    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_path()

from fr_db.db import add_file, connect, ensure_user, init_db, remove_file  # noqa: E402
from fr_db.repositories import FaceRepository, ImageRepository, PersonRepository  # noqa: E402
from fr_db.settings import Settings  # noqa: E402


class Library:
    """Small builder for users, files and images in a test database."""

    def __init__(self, conn, data_dir: Path):
        self.conn = conn
        self.data_dir = data_dir
        self.images = ImageRepository(conn)
        self.faces = FaceRepository(conn)
        self.persons = PersonRepository(conn)

    def user(self, uid: str) -> str:
        ensure_user(self.conn, uid)
        (self.data_dir / uid / "files").mkdir(parents=True, exist_ok=True)
        self.conn.commit()
        return uid

    def image(self, uid: str, path: str, *, model: int = 1, mount_type: str = "home"):
        file_id = add_file(self.conn, uid, f"files/{path}", mount_type=mount_type)
        image = self.images.insert(uid, file_id, model)
        self.conn.commit()
        return image

    def drop_file(self, file_id: int) -> None:
        remove_file(self.conn, file_id)
        self.conn.commit()

    def marker(self, uid: str, folder: str, name: str = ".nomedia", content: str = "") -> Path:
        d = self.data_dir / uid / "files" / folder
        d.mkdir(parents=True, exist_ok=True)
        p = d / name
        p.write_text(content, encoding="utf-8")
        return p

    def image_ids(self, uid: str) -> list[int]:
        return [int(r[0]) for r in self.conn.execute("SELECT id FROM images WHERE user=? ORDER BY id", (uid,))]


@pytest.fixture
def conn(tmp_path: Path):
    c = connect(tmp_path / "fr_db.sqlite")
    init_db(c)
    yield c
    c.close()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    d = tmp_path / "users"
    d.mkdir()
    return d


@pytest.fixture
def library(conn, data_dir: Path) -> Library:
    return Library(conn, data_dir)


@pytest.fixture
def settings(tmp_path: Path, data_dir: Path) -> Settings:
    return Settings(
        FR_DB_PATH=tmp_path / "fr_db.sqlite",
        FR_DATA_DIR=data_dir,
        FR_LOG_DIR=tmp_path / "_logs",
    )


def drain(gen):
    """Run a task generator to the end. Returns (number of yields, return value)."""

    yields = 0
    while True:
        try:
            next(gen)
        except StopIteration as stop:
            return yields, stop.value
        yields += 1
