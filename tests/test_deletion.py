from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from mediaoffload.core.config import Settings, get_settings
from mediaoffload.db.init_db import initialize_database
from mediaoffload.db.session import get_session_factory, reset_session_state
from mediaoffload.library.enumerator import MediaLibraryEnumerator, MediaNotFoundError
from mediaoffload.library.types import DerivedFile, DerivedFileKind, MediaSnapshot
from mediaoffload.offload.deletion import (
    DEFAULT_DELETE_WARNING,
    DeleteKeyResolutionError,
    RemoteDeleteService,
    build_delete_keys,
)
from mediaoffload.state.store import StateStore
from mediaoffload.storage.bulk_delete import BulkDeleteExecutor
from mediaoffload.storage.client import ObjectStorageError


def setup_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("MEDIAOFFLOAD_STATE_ROOT", (tmp_path / "state").as_posix())
    monkeypatch.setenv("MEDIAOFFLOAD_UPLOADS_ROOT", (tmp_path / "uploads").as_posix())

    get_settings.cache_clear()
    reset_session_state()
    initialize_database()
    settings = get_settings()
    settings.uploads_root.mkdir(parents=True, exist_ok=True)
    return settings


def make_service(settings: Settings, storage: MagicMock) -> tuple[RemoteDeleteService, MediaLibraryEnumerator, StateStore]:
    library = MediaLibraryEnumerator(settings, get_session_factory())
    store = StateStore(get_session_factory())
    service = RemoteDeleteService(settings, library, BulkDeleteExecutor(storage), store)
    return service, library, store


def snapshot(remote_path: str | None, relative_path: str = "2024/05/photo.jpg") -> MediaSnapshot:
    return MediaSnapshot(
        id=5,
        relative_path=relative_path,
        mime_type="image/jpeg",
        uploaded_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        derived_files=(
            DerivedFile(file="photo-150x150.jpg", kind=DerivedFileKind.SIZE),
            DerivedFile(file="photo.jpg", kind=DerivedFileKind.ORIGINAL),
            DerivedFile(file="photo.bak.jpg", kind=DerivedFileKind.BACKUP),
        ),
        offloaded=True,
        remote_path=remote_path,
    )


def register_offloaded(settings: Settings, library: MediaLibraryEnumerator, relative_path: str = "2024/05/photo.jpg") -> int:
    path = settings.uploads_root / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"data")
    media = library.register_media(
        relative_path=relative_path,
        derived_files=[DerivedFile(file="photo-150x150.jpg", kind=DerivedFileKind.SIZE)],
    )
    library.mark_offloaded(media.id, remote_path="2024/05", provider="s3", bucket="media")
    return media.id


def test_delete_keys_cover_primary_and_derived_files_once() -> None:
    keys = build_delete_keys(snapshot("2024/05"))

    assert keys == ["2024/05/photo.jpg", "2024/05/photo-150x150.jpg", "2024/05/photo.bak.jpg"]


def test_delete_keys_at_storage_root_have_no_prefix() -> None:
    keys = build_delete_keys(snapshot("", relative_path="photo.jpg"))

    assert keys[0] == "photo.jpg"
    assert all(not key.startswith(("./", "/")) for key in keys)


def test_missing_remote_path_cannot_be_resolved() -> None:
    with pytest.raises(DeleteKeyResolutionError):
        build_delete_keys(snapshot(None))


def test_delete_media_removes_remote_local_and_row(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings = setup_env(tmp_path, monkeypatch)
    storage = MagicMock()
    storage.delete_objects.return_value = []
    service, library, _store = make_service(settings, storage)
    media_id = register_offloaded(settings, library)

    outcome = service.delete_media(media_id, user_id="admin")

    assert outcome.deleted is True
    assert outcome.remote_ok is True
    assert outcome.warning is None
    storage.delete_objects.assert_called_once_with(["2024/05/photo.jpg", "2024/05/photo-150x150.jpg"])
    assert not (settings.uploads_root / "2024/05/photo.jpg").exists()
    with pytest.raises(MediaNotFoundError):
        library.get_media(media_id)
    assert service.pop_delete_notice("admin") is None


def test_remote_failure_leaves_a_one_shot_notice(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings = setup_env(tmp_path, monkeypatch)
    storage = MagicMock()
    storage.delete_objects.side_effect = ObjectStorageError("503 Slow Down")
    storage.delete_object.side_effect = ObjectStorageError("503 Slow Down")
    service, library, _store = make_service(settings, storage)
    media_id = register_offloaded(settings, library)

    outcome = service.delete_media(media_id, user_id="admin")

    assert outcome.deleted is True
    assert outcome.remote_ok is False
    assert outcome.warning is None
    notice = service.pop_delete_notice("admin")
    assert notice is not None
    assert notice.media_id == media_id
    assert service.pop_delete_notice("admin") is None
    assert service.pop_delete_notice("viewer") is None


def test_unresolvable_keys_produce_a_notice_without_storage_calls(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings = setup_env(tmp_path, monkeypatch)
    storage = MagicMock()
    service, _library, _store = make_service(settings, storage)

    assert service.delete_remote_files(snapshot(None), user_id="admin") is False

    storage.delete_objects.assert_not_called()
    notice = service.pop_delete_notice("admin")
    assert notice is not None
    assert "Unable to find storage key for media ID 5" in notice.message


def test_notice_expires(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings = setup_env(tmp_path, monkeypatch)
    storage = MagicMock()
    service, _library, store = make_service(settings, storage)
    service.delete_remote_files(snapshot(None), user_id="admin")

    later = datetime.now(tz=timezone.utc) + timedelta(seconds=settings.delete_notice_ttl_seconds + 1)
    monkeypatch.setattr(store, "_now", lambda: later)

    assert service.pop_delete_notice("admin") is None


def test_media_that_was_never_offloaded_skips_storage(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings = setup_env(tmp_path, monkeypatch)
    storage = MagicMock()
    service, library, _store = make_service(settings, storage)
    media = library.register_media(relative_path="local-only.jpg")

    outcome = service.delete_media(media.id)

    assert outcome.remote_ok is True
    storage.delete_objects.assert_not_called()


def test_remote_failure_without_user_is_reported_in_the_outcome(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings = setup_env(tmp_path, monkeypatch)
    storage = MagicMock()
    storage.delete_objects.side_effect = ObjectStorageError("503 Slow Down")
    storage.delete_object.side_effect = ObjectStorageError("503 Slow Down")
    service, library, store = make_service(settings, storage)
    media_id = register_offloaded(settings, library)

    outcome = service.delete_media(media_id)

    assert outcome.remote_ok is False
    assert outcome.warning == DEFAULT_DELETE_WARNING
    assert store.get("delete_error_admin") is None
