import hashlib
import logging
import time
from typing import Callable
from typing import Optional

from img2url.config import Config
from img2url.models import HashIndexRecord
from img2url.stores.state_store import StateStore
from img2url.utils import utc_timestamp


logger = logging.getLogger(__name__)


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class DedupIndex:
    """Maps the SHA-256 of raw uploaded bytes to the object first stored for them.

    Entries carry their own 30 day TTL, which is independent of the object's
    expiry, so a hit is only a hint: callers must confirm the object is still
    live before short-circuiting.
    """

    def __init__(self, config: Config, state_store: StateStore, *, clock: Callable[[], float] = time.time):
        self.config = config
        self.state = state_store
        self.clock = clock

    @staticmethod
    def _key(digest: str) -> str:
        return f"hash:{digest}"

    async def lookup(self, digest: str) -> Optional[HashIndexRecord]:
        raw = await self.state.get(self._key(digest))
        if not raw:
            return None
        try:
            return HashIndexRecord.model_validate_json(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable hash index record digest={digest}")
            return None

    async def record_repeat(self, digest: str, record: HashIndexRecord) -> HashIndexRecord:
        refreshed = record.model_copy(
            update={
                "upload_count": (record.upload_count or 1) + 1,
                "last_upload_time": utc_timestamp(self.clock()),
            }
        )
        await self.state.put(self._key(digest), refreshed.to_json(), ttl_seconds=self.config.hash_index_ttl_seconds)
        return refreshed

    async def record_new(self, digest: str, *, url: str, code: str, file_name: str) -> HashIndexRecord:
        record = HashIndexRecord(
            url=url,
            code=code,
            file_name=file_name,
            timestamp=utc_timestamp(self.clock()),
            upload_count=1,
        )
        await self.state.put(self._key(digest), record.to_json(), ttl_seconds=self.config.hash_index_ttl_seconds)
        return record

    async def forget(self, digest: str) -> None:
        await self.state.delete(self._key(digest))
