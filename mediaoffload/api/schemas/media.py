from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from mediaoffload.library.types import DerivedFileKind


class DerivedFileModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    file: str = Field(min_length=1, max_length=255)
    kind: DerivedFileKind = DerivedFileKind.SIZE


class RegisterMediaRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    relative_path: str = Field(min_length=1, max_length=4096)
    mime_type: str | None = Field(default=None, max_length=255)
    derived_files: list[DerivedFileModel] = Field(default_factory=list)
    uploaded_at: datetime | None = None


class MediaResponse(BaseModel):
    id: int
    relative_path: str
    mime_type: str | None
    uploaded_at: datetime
    derived_files: list[DerivedFileModel]
    offloaded: bool
    remote_path: str | None
    offloaded_at: datetime | None
    provider: str | None
    bucket: str | None
    error_log: str | None


class MediaStatsResponse(BaseModel):
    offloaded: int
    unoffloaded: int
    errored: int


class DeleteMediaResponse(BaseModel):
    deleted: bool
    remote_ok: bool
    warning: str | None


class DeleteNoticeResponse(BaseModel):
    media_id: int | None
    message: str | None
