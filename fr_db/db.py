from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA temp_store=MEMORY;

CREATE TABLE IF NOT EXISTS users (
    uid TEXT PRIMARY KEY,
    display_name TEXT,
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at TEXT
);

-- Per-user key/value settings (checkpoints, scan flags, opt-in)
CREATE TABLE IF NOT EXISTS user_settings (
    user TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT,
    PRIMARY KEY(user, key)
);

CREATE TABLE IF NOT EXISTS app_settings (
    key TEXT PRIMARY KEY,
    value TEXT
);

-- File index: one row per file known to a storage.
-- `path` is relative to the storage root (e.g. files/Photos/a.jpg).
CREATE TABLE IF NOT EXISTS storages (
    numeric_id INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS filecache (
    fileid INTEGER PRIMARY KEY AUTOINCREMENT,
    storage INTEGER NOT NULL,
    path TEXT NOT NULL,
    mimetype TEXT,
    mount_type TEXT NOT NULL DEFAULT 'home',
    UNIQUE(storage, path)
);

-- Images known to face detection. `id` only grows; stale sweeps resume on it.
CREATE TABLE IF NOT EXISTS images (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user TEXT NOT NULL,
    file INTEGER NOT NULL,
    model INTEGER NOT NULL,
    is_processed INTEGER NOT NULL DEFAULT 0,
    error TEXT,
    last_processed_time TEXT,
    processing_duration INTEGER
);

-- Faces are removed explicitly (persons must be invalidated first), so no cascade.
CREATE TABLE IF NOT EXISTS faces (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    image INTEGER NOT NULL,
    person INTEGER,
    x INTEGER,
    y INTEGER,
    width INTEGER,
    height INTEGER,
    confidence REAL,
    creation_time TEXT
);

CREATE TABLE IF NOT EXISTS persons (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user TEXT NOT NULL,
    name TEXT,
    is_valid INTEGER NOT NULL DEFAULT 1,
    last_generation_time TEXT,
    linked_user TEXT
);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="seconds") + "Z"


def connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    _ensure_indexes(conn)
    conn.commit()


def _ensure_indexes(conn: sqlite3.Connection) -> None:
    """Create indexes the maintenance queries rely on.

    `idx_images_user_model_id` is what keeps `find_images_after` a range scan
    instead of a full table scan.
    """

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_images_user_model_id ON images(user, model, id)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_images_file ON images(file)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_faces_image ON faces(image)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_faces_person ON faces(person)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_persons_user ON persons(user)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_filecache_storage ON filecache(storage)")


def ensure_user(
    conn: sqlite3.Connection,
    uid: str,
    *,
    display_name: str | None = None,
    enabled: bool = True,
) -> None:
    uid = str(uid or "").strip()
    if not uid:
        raise ValueError("uid is required")
    conn.execute(
        """
        INSERT INTO users(uid, display_name, enabled, created_at)
        VALUES(?, ?, ?, ?)
        ON CONFLICT(uid) DO UPDATE SET
          display_name=COALESCE(excluded.display_name, users.display_name),
          enabled=excluded.enabled
        """,
        (uid, display_name, 1 if enabled else 0, utc_now()),
    )


def home_storage_id(uid: str) -> str:
    return f"home::{uid}"


def ensure_storage(conn: sqlite3.Connection, storage_id: str) -> int:
    """Return the numeric id of a storage, registering it if needed."""

    conn.execute("INSERT OR IGNORE INTO storages(id) VALUES(?)", (storage_id,))
    row = conn.execute("SELECT numeric_id FROM storages WHERE id=?", (storage_id,)).fetchone()
    return int(row[0])


def add_file(
    conn: sqlite3.Connection,
    uid: str,
    path: str,
    *,
    mimetype: str = "image/jpeg",
    mount_type: str = "home",
) -> int:
    """Index a file in the user's home storage and return its file id."""

    storage = ensure_storage(conn, home_storage_id(uid))
    rel = str(path).lstrip("/")
    conn.execute(
        """
        INSERT INTO filecache(storage, path, mimetype, mount_type)
        VALUES(?, ?, ?, ?)
        ON CONFLICT(storage, path) DO UPDATE SET
          mimetype=excluded.mimetype,
          mount_type=excluded.mount_type
        """,
        (storage, rel, mimetype, mount_type),
    )
    row = conn.execute(
        "SELECT fileid FROM filecache WHERE storage=? AND path=?", (storage, rel)
    ).fetchone()
    return int(row[0])


def remove_file(conn: sqlite3.Connection, file_id: int) -> None:
    conn.execute("DELETE FROM filecache WHERE fileid=?", (int(file_id),))
