from __future__ import annotations

import json
import logging
import posixpath
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .db import home_storage_id
from .models import Node

logger = logging.getLogger(__name__)

# Any of these files in a directory excludes that directory's subtree.
NOMEDIA_MARKERS = (".nomedia", ".noimage")
# A JSON file that can switch detection off for a subtree: {"detection": false}
FOLDER_CONFIG_FILE = ".facerecognition.json"

EXCLUSION_MARKERS = NOMEDIA_MARKERS + (FOLDER_CONFIG_FILE,)


@dataclass(frozen=True)
class UserFolder:
    user: str
    storage_id: int | None
    root: str  # e.g. /alice/files


class FileService:
    """File lookups for maintenance tasks.

    Answers three questions against the file index (`filecache`) and the user
    trees under FR_DATA_DIR:
    - which of these file ids still exist (one query per call),
    - what node does a file id resolve to,
    - is a node excluded from detection by a marker file.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        data_dir: Path,
        *,
        allowed_mount_types: Iterable[str] = ("home",),
    ):
        self.conn = conn
        self.data_dir = Path(data_dir)
        self.allowed_mount_types = frozenset(str(m).strip().lower() for m in allowed_mount_types)

    def setup_fs(self, user: str) -> None:
        """Make sure the user's tree exists on disk."""

        (self.data_dir / user / "files").mkdir(parents=True, exist_ok=True)

    def get_user_folder(self, user: str) -> UserFolder:
        row = self.conn.execute(
            "SELECT numeric_id FROM storages WHERE id=?", (home_storage_id(user),)
        ).fetchone()
        return UserFolder(
            user=user,
            storage_id=int(row[0]) if row else None,
            root=f"/{user}/files",
        )

    def get_by_file_ids_in_storage(self, file_ids: Iterable[int], storage_id: int | None) -> dict[int, dict]:
        """Bulk existence lookup: entries for the ids present in `storage_id`.

        The ids travel as one JSON parameter, so the whole batch costs a single
        query no matter how large it is.
        """

        ids = [int(f) for f in file_ids]
        if not ids or storage_id is None:
            return {}
        rows = self.conn.execute(
            """
            SELECT fileid, storage, path, mimetype, mount_type FROM filecache
            WHERE storage=? AND fileid IN (SELECT value FROM json_each(?))
            """,
            (int(storage_id), json.dumps(ids)),
        ).fetchall()
        return {int(r["fileid"]): dict(r) for r in rows}

    def get_by_id(self, user: str, file_id: int) -> Node | None:
        """Resolve a file id inside the user's home storage."""

        row = self.conn.execute(
            """
            SELECT f.fileid, f.path, f.mimetype, f.mount_type FROM filecache f
            JOIN storages s ON s.numeric_id = f.storage
            WHERE s.id=? AND f.fileid=?
            """,
            (home_storage_id(user), int(file_id)),
        ).fetchone()
        if row is None:
            return None
        return Node(
            file_id=int(row["fileid"]),
            user=user,
            path=posixpath.join(f"/{user}", str(row["path"])),
            mount_type=str(row["mount_type"] or "home").lower(),
            mimetype=row["mimetype"],
        )

    def is_allowed_node(self, node: Node) -> bool:
        return node.mount_type in self.allowed_mount_types

    def _local_dir(self, path: str) -> Path:
        return self.data_dir / path.lstrip("/")

    def _folder_disables_detection(self, folder: Path) -> bool:
        for marker in NOMEDIA_MARKERS:
            if (folder / marker).is_file():
                return True
        cfg = folder / FOLDER_CONFIG_FILE
        if not cfg.is_file():
            return False
        try:
            payload = json.loads(cfg.read_text(encoding="utf-8"))
        except (ValueError, UnicodeDecodeError):
            logger.warning("Ignoring unreadable %s", cfg)
            return False
        return isinstance(payload, dict) and payload.get("detection") is False

    def is_under_no_detection(self, node: Node) -> bool:
        """Walk from the node's folder up to the user's files root looking for markers.

        This touches the disk once per ancestor; callers that check many files
        should cache negative answers per folder.
        """

        root = f"/{node.user}/files"
        current = node.parent_path
        while True:
            if self._folder_disables_detection(self._local_dir(current)):
                return True
            if current == root or not current.startswith(root + "/"):
                return False
            current = posixpath.dirname(current)

    @staticmethod
    def is_exclusion_marker(path: str) -> bool:
        return posixpath.basename(str(path)) in EXCLUSION_MARKERS
