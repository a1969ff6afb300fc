from mediaoffload.library.enumerator import (
    MediaConflictError,
    MediaLibraryEnumerator,
    MediaNotFoundError,
    media_snapshot_to_dict,
    parse_derived_files,
)
from mediaoffload.library.types import DerivedFile, DerivedFileKind, LibraryCounts, MediaSnapshot, WorkItem

__all__ = [
    "MediaConflictError",
    "MediaLibraryEnumerator",
    "MediaNotFoundError",
    "media_snapshot_to_dict",
    "parse_derived_files",
    "DerivedFile",
    "DerivedFileKind",
    "LibraryCounts",
    "MediaSnapshot",
    "WorkItem",
]
