from __future__ import annotations

import sqlite3
from typing import Generator

from ..cascade import ImageDeleter
from ..files import FileService
from ..models import Image, Node
from ..repositories import AppSettingsRepository, ImageRepository, SettingsStore, UserSettingsRepository
from ..settings import Settings
from .base import BackgroundTask, TaskContext

DEFAULT_BATCH_SIZE = 1000
DEFAULT_YIELD_EVERY = 200

STALE_REMOVED_KEY = "StaleImagesRemovalTask_staleRemovedImages"


class PathExclusionCache:
    """Remembers folders already verified as *not* excluded from detection.

    Only negative answers are stored: a file in a cached folder is answered
    without walking the tree again, while an excluded answer is always
    recomputed. Lives for one user's scan.
    """

    def __init__(self, file_service: FileService):
        self.file_service = file_service
        self._validated: set[str] = set()
        self.hits = 0
        self.misses = 0

    def reset(self) -> None:
        self._validated.clear()
        self.hits = 0
        self.misses = 0

    def is_excluded(self, node: Node) -> bool:
        parent = node.parent_path
        if parent in self._validated:
            self.hits += 1
            return False

        self.misses += 1
        excluded = self.file_service.is_under_no_detection(node)
        if not excluded:
            self._validated.add(parent)
        return excluded

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return (self.hits / total) * 100 if total else 0.0


class BatchCursor:
    """Last image id checked for a user; 0 means no scan in progress."""

    def __init__(self, settings: SettingsStore, user: str):
        self.settings = settings
        self.user = user

    def load(self) -> int:
        return self.settings.get_last_stale_image_checked(self.user)

    def save(self, image_id: int) -> None:
        self.settings.set_last_stale_image_checked(image_id, self.user)

    def reset(self) -> None:
        self.save(0)


class StaleImagesRemovalTask(BackgroundTask):
    """Crawl a user's images and drop those whose file is gone or excluded.

    Per user, images are read in id order in pages of `batch_size`. Each page
    costs one bulk existence query; only files that still exist are resolved
    and checked for mount type and exclusion markers. The last checked id is
    saved after every page, so an interrupted sweep resumes where it stopped.
    It should be executed rarely.
    """

    def __init__(
        self,
        images: ImageRepository,
        deleter: ImageDeleter,
        file_service: FileService,
        user_settings: SettingsStore,
        app_settings: AppSettingsRepository,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        yield_every: int = DEFAULT_YIELD_EVERY,
    ):
        super().__init__()
        self.images = images
        self.deleter = deleter
        self.file_service = file_service
        self.user_settings = user_settings
        self.app_settings = app_settings
        self.batch_size = int(batch_size)
        self.yield_every = int(yield_every)
        self.exclusion_cache = PathExclusionCache(file_service)

    @classmethod
    def from_settings(cls, conn: sqlite3.Connection, settings: Settings) -> "StaleImagesRemovalTask":
        return cls(
            ImageRepository(conn),
            ImageDeleter(conn),
            FileService(conn, settings.FR_DATA_DIR, allowed_mount_types=settings.FR_ALLOWED_MOUNT_TYPES),
            UserSettingsRepository(conn),
            AppSettingsRepository(conn),
            batch_size=settings.FR_STALE_BATCH_SIZE,
            yield_every=settings.FR_STALE_YIELD_EVERY,
        )

    def description(self) -> str:
        return "Crawl for stale images (either missing in filesystem or under .nomedia) and remove them from DB"

    def execute(self, context: TaskContext) -> Generator[None, None, bool]:
        self.set_context(context)

        stale_removed = 0
        model = self.app_settings.get_current_face_model()

        for user in context.eligible_users:
            if not context.is_running_in_sync_mode() and not self.user_settings.get_need_remove_stale_images(user):
                # Full scan already done for this user
                self.log_debug("Skipping stale images removal for user %s as there is no need for it", user)
                continue

            stale_removed += yield from self.remove_stale_images_for_user(user, model)

            self.user_settings.set_need_remove_stale_images(False, user)
            yield

        context.property_bag[STALE_REMOVED_KEY] = stale_removed
        return True

    def remove_stale_images_for_user(self, user: str, model: int) -> Generator[None, None, int]:
        """Sweep one user's images for `model`; the generator returns the removed count."""

        self.file_service.setup_fs(user)
        folder = self.file_service.get_user_folder(user)

        cursor = BatchCursor(self.user_settings, user)
        last_checked = cursor.load()
        removed = 0
        processed = 0

        self.exclusion_cache.reset()

        self.log_debug("Starting stale image removal for user %s from image ID %d", user, last_checked)
        yield

        while True:
            batch = self.images.find_images_after(user, model, last_checked, self.batch_size)
            if not batch:
                break

            self.log_debug("Processing batch of %d images for user %s", len(batch), user)

            file_ids = [image.file for image in batch]
            existing = self.file_service.get_by_file_ids_in_storage(file_ids, folder.storage_id)
            self.log_debug("Bulk lookup: %d entries found from %d file IDs", len(existing), len(file_ids))

            for image in batch:
                if image.file not in existing:
                    self.deleter.delete(image)
                    removed += 1
                    last_checked = image.id
                    continue

                if self._is_stale(image):
                    self.deleter.delete(image)
                    removed += 1

                last_checked = image.id
                processed += 1

                if processed % self.yield_every == 0:
                    self.log_debug("Processed %d images for user %s (%d removed)", processed, user, removed)
                    yield

            cursor.save(last_checked)
            yield

        cursor.reset()

        self.log_info(
            "Completed stale image removal for user %s: processed %d images, removed %d stale images",
            user,
            processed,
            removed,
        )
        cache = self.exclusion_cache
        if cache.hits + cache.misses > 0:
            self.log_debug(
                "Parent path cache stats: %d hits, %d misses (%.1f%% hit rate)",
                cache.hits,
                cache.misses,
                cache.hit_rate,
            )

        return removed

    def _is_stale(self, image: Image) -> bool:
        node = self.file_service.get_by_id(image.user, image.file)
        if node is None:
            # Index said the file exists but it no longer resolves
            return True
        if not self.file_service.is_allowed_node(node):
            return True
        return self.exclusion_cache.is_excluded(node)
