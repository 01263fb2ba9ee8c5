from __future__ import annotations

import logging
import sqlite3

from .models import Image
from .repositories import FaceRepository, ImageRepository, PersonRepository

logger = logging.getLogger(__name__)


class ImageDeleter:
    """Remove an image together with everything that hangs off it.

    Order matters: person invalidation looks up the image's faces, so persons are
    invalidated first, then faces are removed, then the image row. The three steps
    run in one transaction.

    Every code path that drops images (stale sweeps, file deletion hooks) goes
    through here.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        persons: PersonRepository | None = None,
        faces: FaceRepository | None = None,
        images: ImageRepository | None = None,
    ):
        self.conn = conn
        self.persons = persons or PersonRepository(conn)
        self.faces = faces or FaceRepository(conn)
        self.images = images or ImageRepository(conn)

    def delete(self, image: Image) -> None:
        logger.info("Removing image %d for user %s", image.id, image.user)
        with self.conn:
            self.persons.invalidate_persons(image.id)
            self.faces.remove_from_image(image.id)
            self.images.delete(image)
