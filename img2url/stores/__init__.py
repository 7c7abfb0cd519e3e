from .content_store import ContentStore
from .content_store import ListEntry
from .content_store import ListPage
from .content_store import S3ContentStore
from .content_store import StoredBlob
from .state_store import RedisStateStore
from .state_store import StateStore


__all__ = [
    "ContentStore",
    "S3ContentStore",
    "StoredBlob",
    "ListEntry",
    "ListPage",
    "StateStore",
    "RedisStateStore",
]
