from __future__ import annotations

from pathlib import Path, PurePosixPath


class PathSafetyError(ValueError):
    pass


def validate_upload_relative_path(raw_path: str) -> Path:
    if not raw_path or not raw_path.strip():
        raise PathSafetyError("Path cannot be blank")
    if raw_path.startswith("/"):
        raise PathSafetyError("Path must be relative to the uploads root")
    if ".." in Path(raw_path).parts:
        raise PathSafetyError("Path traversal is not allowed")
    if "~" in raw_path:
        raise PathSafetyError("Home expansion is not allowed")
    if "$" in raw_path:
        raise PathSafetyError("Environment variable expansion is not allowed")
    return Path(raw_path)


def resolve_under_uploads(uploads_root: Path, raw_path: str) -> Path:
    rel = validate_upload_relative_path(raw_path)
    candidate = (uploads_root / rel).resolve(strict=False)
    root = uploads_root.resolve(strict=False)

    if candidate == root or root in candidate.parents:
        return candidate

    raise PathSafetyError("Path escapes uploads root")


def join_object_key(prefix: str, name: str) -> str:
    # Keys at the storage root carry no leading "./" or "/".
    parts = [part for part in PurePosixPath(prefix).parts if part not in {"", ".", "/"}]
    if ".." in parts:
        raise PathSafetyError("Object key prefix cannot contain '..'")
    file_name = PurePosixPath(name).name
    if not file_name:
        raise PathSafetyError("Object key name cannot be blank")
    return "/".join([*parts, file_name])


def object_key_prefix(key: str) -> str:
    parent = PurePosixPath(key).parent.as_posix()
    return "" if parent in {".", "/"} else parent
