from mediaoffload.offload.deletion import (
    DeleteKeyResolutionError,
    DeleteNotice,
    DeleteOutcome,
    RemoteDeleteService,
    build_delete_keys,
)
from mediaoffload.offload.selector import BatchSelection, CandidateSelector
from mediaoffload.offload.uploader import MediaOffloadWorker, remote_prefix_for

__all__ = [
    "DeleteKeyResolutionError",
    "DeleteNotice",
    "DeleteOutcome",
    "RemoteDeleteService",
    "build_delete_keys",
    "BatchSelection",
    "CandidateSelector",
    "MediaOffloadWorker",
    "remote_prefix_for",
]
