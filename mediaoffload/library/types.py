from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class DerivedFileKind(str, Enum):
    SIZE = "size"
    BACKUP = "backup"
    ORIGINAL = "original"
    SOURCE = "source"


@dataclass(frozen=True)
class DerivedFile:
    file: str
    kind: DerivedFileKind


@dataclass(frozen=True)
class WorkItem:
    id: int
    relative_path: str
    uploaded_at: datetime
    has_error: bool = False
    offloaded: bool = False


@dataclass(frozen=True)
class MediaSnapshot:
    id: int
    relative_path: str
    mime_type: str | None
    uploaded_at: datetime
    derived_files: tuple[DerivedFile, ...] = field(default_factory=tuple)
    offloaded: bool = False
    remote_path: str | None = None
    offloaded_at: datetime | None = None
    provider: str | None = None
    bucket: str | None = None
    error_log: str | None = None


@dataclass(frozen=True)
class LibraryCounts:
    offloaded: int
    unoffloaded: int
    errored: int
