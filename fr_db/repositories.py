from __future__ import annotations

import sqlite3
from typing import Any, Protocol

from .db import utc_now
from .models import Face, Image, Person


# user_settings keys
STALE_IMAGES_REMOVAL_NEEDED = "stale_images_removal_needed"
STALE_IMAGES_LAST_CHECKED = "stale_images_last_checked"
USER_ENABLED = "enabled"

# app_settings keys
FACE_MODEL = "model"
DEFAULT_FACE_MODEL = 1


def _as_bool(raw: object, default: bool) -> bool:
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


class SettingsStore(Protocol):
    """What maintenance tasks need from per-user settings."""

    def get_need_remove_stale_images(self, user: str) -> bool: ...

    def set_need_remove_stale_images(self, needed: bool, user: str) -> None: ...

    def get_last_stale_image_checked(self, user: str) -> int: ...

    def set_last_stale_image_checked(self, image_id: int, user: str) -> None: ...


class UserSettingsRepository:
    """Per-user key/value settings backed by `user_settings`.

    Setters commit immediately: a saved checkpoint must survive a crash of the
    surrounding job.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _get(self, user: str, key: str) -> str | None:
        row = self.conn.execute(
            "SELECT value FROM user_settings WHERE user=? AND key=?", (user, key)
        ).fetchone()
        return None if row is None else row[0]

    def _set(self, user: str, key: str, value: Any) -> None:
        self.conn.execute(
            """
            INSERT INTO user_settings(user, key, value) VALUES(?, ?, ?)
            ON CONFLICT(user, key) DO UPDATE SET value=excluded.value
            """,
            (user, key, str(value)),
        )
        self.conn.commit()

    def get_need_remove_stale_images(self, user: str) -> bool:
        return _as_bool(self._get(user, STALE_IMAGES_REMOVAL_NEEDED), False)

    def set_need_remove_stale_images(self, needed: bool, user: str) -> None:
        self._set(user, STALE_IMAGES_REMOVAL_NEEDED, "true" if needed else "false")

    def get_last_stale_image_checked(self, user: str) -> int:
        raw = self._get(user, STALE_IMAGES_LAST_CHECKED)
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            return 0

    def set_last_stale_image_checked(self, image_id: int, user: str) -> None:
        self._set(user, STALE_IMAGES_LAST_CHECKED, int(image_id))

    def get_user_enabled(self, user: str) -> bool:
        return _as_bool(self._get(user, USER_ENABLED), True)

    def set_user_enabled(self, enabled: bool, user: str) -> None:
        self._set(user, USER_ENABLED, "true" if enabled else "false")


class AppSettingsRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get_current_face_model(self) -> int:
        row = self.conn.execute("SELECT value FROM app_settings WHERE key=?", (FACE_MODEL,)).fetchone()
        if row is None or row[0] is None:
            return DEFAULT_FACE_MODEL
        return int(row[0])

    def set_current_face_model(self, model: int) -> None:
        self.conn.execute(
            """
            INSERT INTO app_settings(key, value) VALUES(?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (FACE_MODEL, str(int(model))),
        )
        self.conn.commit()


class UserRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def eligible_users(self, only_user: str | None = None) -> list[str]:
        """Return enabled users in a stable order.

        A user is eligible when the account is enabled and has not opted out via
        the `enabled` user setting.
        """

        if only_user:
            rows = self.conn.execute(
                "SELECT uid FROM users WHERE uid=? AND enabled=1", (only_user,)
            ).fetchall()
        else:
            rows = self.conn.execute("SELECT uid FROM users WHERE enabled=1 ORDER BY uid ASC").fetchall()
        settings = UserSettingsRepository(self.conn)
        return [str(r[0]) for r in rows if settings.get_user_enabled(str(r[0]))]


class ImageRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def insert(self, user: str, file_id: int, model: int, *, is_processed: bool = True) -> Image:
        cur = self.conn.execute(
            """
            INSERT INTO images(user, file, model, is_processed, last_processed_time)
            VALUES(?, ?, ?, ?, ?)
            """,
            (user, int(file_id), int(model), 1 if is_processed else 0, utc_now() if is_processed else None),
        )
        return self.get(int(cur.lastrowid))

    def get(self, image_id: int) -> Image:
        row = self.conn.execute("SELECT * FROM images WHERE id=?", (int(image_id),)).fetchone()
        if row is None:
            raise LookupError(f"image {image_id} does not exist")
        return Image.from_row(row)

    def find_images_after(self, user: str, model: int, after_id: int, limit: int) -> list[Image]:
        """Next page of a user's images for `model`, strictly after `after_id`.

        Ordered by id ascending; the last id of a page is a valid resume point.
        """

        rows = self.conn.execute(
            """
            SELECT * FROM images
            WHERE user=? AND model=? AND id>?
            ORDER BY id ASC
            LIMIT ?
            """,
            (user, int(model), int(after_id), int(limit)),
        ).fetchall()
        return [Image.from_row(r) for r in rows]

    def find_from_file(self, user: str, model: int, file_id: int) -> Image | None:
        row = self.conn.execute(
            "SELECT * FROM images WHERE user=? AND model=? AND file=? ORDER BY id ASC LIMIT 1",
            (user, int(model), int(file_id)),
        ).fetchone()
        return Image.from_row(row) if row else None

    def count_for_user(self, user: str, model: int | None = None) -> int:
        if model is None:
            row = self.conn.execute("SELECT COUNT(*) FROM images WHERE user=?", (user,)).fetchone()
        else:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM images WHERE user=? AND model=?", (user, int(model))
            ).fetchone()
        return int(row[0])

    def delete(self, image: Image) -> None:
        self.conn.execute("DELETE FROM images WHERE id=?", (image.id,))


class FaceRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def insert(
        self,
        image_id: int,
        *,
        person: int | None = None,
        box: tuple[int, int, int, int] = (0, 0, 0, 0),
        confidence: float = 1.0,
    ) -> int:
        x, y, w, h = box
        cur = self.conn.execute(
            """
            INSERT INTO faces(image, person, x, y, width, height, confidence, creation_time)
            VALUES(?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (int(image_id), person, x, y, w, h, float(confidence), utc_now()),
        )
        return int(cur.lastrowid)

    def find_by_image(self, image_id: int) -> list[Face]:
        rows = self.conn.execute(
            "SELECT * FROM faces WHERE image=? ORDER BY id ASC", (int(image_id),)
        ).fetchall()
        return [Face.from_row(r) for r in rows]

    def remove_from_image(self, image_id: int) -> None:
        self.conn.execute("DELETE FROM faces WHERE image=?", (int(image_id),))


class PersonRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def insert(self, user: str, name: str | None = None) -> int:
        cur = self.conn.execute(
            "INSERT INTO persons(user, name, is_valid, last_generation_time) VALUES(?, ?, 1, ?)",
            (user, name, utc_now()),
        )
        return int(cur.lastrowid)

    def get(self, person_id: int) -> Person | None:
        row = self.conn.execute("SELECT * FROM persons WHERE id=?", (int(person_id),)).fetchone()
        return Person.from_row(row) if row else None

    def invalidate_persons(self, image_id: int) -> None:
        """Mark every person with a face in `image_id` as needing regeneration.

        Reads current face membership, so it must run before those faces go away.
        """

        self.conn.execute(
            """
            UPDATE persons SET is_valid=0
            WHERE id IN (SELECT person FROM faces WHERE image=? AND person IS NOT NULL)
            """,
            (int(image_id),),
        )
