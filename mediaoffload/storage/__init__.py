from mediaoffload.storage.bulk_delete import BulkDeleteExecutor, chunked, normalize_keys
from mediaoffload.storage.client import DeleteError, ObjectStorageClient, ObjectStorageError, S3ObjectStorage

__all__ = [
    "BulkDeleteExecutor",
    "chunked",
    "normalize_keys",
    "DeleteError",
    "ObjectStorageClient",
    "ObjectStorageError",
    "S3ObjectStorage",
]
