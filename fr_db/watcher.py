from __future__ import annotations

import logging
import sqlite3

from .cascade import ImageDeleter
from .files import FileService
from .repositories import AppSettingsRepository, ImageRepository, UserSettingsRepository

logger = logging.getLogger(__name__)


class Watcher:
    """Reacts to file events so the index does not drift between sweeps."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.images = ImageRepository(conn)
        self.deleter = ImageDeleter(conn, images=self.images)
        self.user_settings = UserSettingsRepository(conn)
        self.app_settings = AppSettingsRepository(conn)

    def post_delete(self, user: str, file_id: int) -> bool:
        """Drop the image (and its faces) for a deleted file. Returns True if one was removed."""

        model = self.app_settings.get_current_face_model()
        image = self.images.find_from_file(user, model, file_id)
        if image is None:
            return False
        self.deleter.delete(image)
        return True

    def post_write(self, user: str, path: str) -> bool:
        """Flag a stale sweep when an exclusion marker appears in the user's tree."""

        if not FileService.is_exclusion_marker(path):
            return False
        logger.debug("Exclusion marker %s written for user %s, scheduling stale sweep", path, user)
        self.user_settings.set_need_remove_stale_images(True, user)
        return True


def request_stale_scan(conn: sqlite3.Connection, user: str) -> None:
    """Ask for a fresh full sweep of `user` on the next run."""

    settings = UserSettingsRepository(conn)
    settings.set_last_stale_image_checked(0, user)
    settings.set_need_remove_stale_images(True, user)
