from __future__ import annotations

import posixpath
import sqlite3
from dataclasses import dataclass


@dataclass(frozen=True)
class Image:
    """One image known to face detection for a given model."""

    id: int
    user: str
    file: int
    model: int
    is_processed: bool = False
    error: str | None = None
    last_processed_time: str | None = None
    processing_duration: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Image":
        return cls(
            id=int(row["id"]),
            user=str(row["user"]),
            file=int(row["file"]),
            model=int(row["model"]),
            is_processed=bool(row["is_processed"]),
            error=row["error"],
            last_processed_time=row["last_processed_time"],
            processing_duration=row["processing_duration"],
        )


@dataclass(frozen=True)
class Face:
    id: int
    image: int
    person: int | None
    x: int
    y: int
    width: int
    height: int
    confidence: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Face":
        return cls(
            id=int(row["id"]),
            image=int(row["image"]),
            person=row["person"],
            x=int(row["x"] or 0),
            y=int(row["y"] or 0),
            width=int(row["width"] or 0),
            height=int(row["height"] or 0),
            confidence=float(row["confidence"] or 0.0),
        )


@dataclass(frozen=True)
class Person:
    id: int
    user: str
    name: str | None
    is_valid: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Person":
        return cls(
            id=int(row["id"]),
            user=str(row["user"]),
            name=row["name"],
            is_valid=bool(row["is_valid"]),
        )


@dataclass(frozen=True)
class Node:
    """A resolved file in a user's tree.

    `path` is absolute within the data dir (e.g. /alice/files/Photos/a.jpg).
    """

    file_id: int
    user: str
    path: str
    mount_type: str
    mimetype: str | None = None

    @property
    def parent_path(self) -> str:
        return posixpath.dirname(self.path)
