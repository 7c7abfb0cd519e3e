"""Upload ingestion: validate, dedup, gate, transcode, persist, count.

The steps of ``IngestionPipeline.ingest`` run strictly in order and each may
abort the request with an ``UploadError``. Later steps assume earlier ones
succeeded, so nothing is reordered or parallelised. Once persistence starts,
any failure is fatal for the request and nothing already written is rolled
back: an orphaned blob or metadata record is left for the sweep and the stats
reconciliation to deal with.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass
from typing import Callable
from typing import Optional

from img2url.config import Config
from img2url.errors import FileTooLargeError
from img2url.errors import InvalidFileTypeError
from img2url.errors import MissingFileError
from img2url.errors import PersistenceError
from img2url.errors import StorageFullError
from img2url.models import ObjectMetadata
from img2url.monitoring import get_metrics_collector
from img2url.services.abuse_gate import AbuseGate
from img2url.services.dedup_index import DedupIndex
from img2url.services.dedup_index import content_hash
from img2url.services.expiry_manager import ExpiryManager
from img2url.services.expiry_manager import metadata_key
from img2url.services.stats_aggregator import StatsAggregator
from img2url.services.transcoder import Transcoder
from img2url.stores.content_store import ContentStore
from img2url.stores.state_store import StateStore
from img2url.utils import epoch_ms
from img2url.utils import utc_timestamp


logger = logging.getLogger(__name__)

SHORT_CODE_ALPHABET = string.ascii_lowercase + string.digits
DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class IngestResult:
    url: str
    code: str
    file_name: str
    size: int
    content_type: str
    timestamp: str
    expiry_epoch_ms: Optional[int]
    expiration_days: Optional[int]
    duplicate: bool
    upload_count: int
    remaining_uploads: Optional[int] = None
    captcha_required: Optional[bool] = None
    original_timestamp: Optional[str] = None

    def to_response_data(self) -> dict:
        data = {
            "url": self.url,
            "fileName": self.file_name,
            "size": self.size,
            "type": self.content_type,
            "timestamp": self.timestamp,
            "expiration": self.expiry_epoch_ms,
            "expirationDays": self.expiration_days,
            "duplicate": self.duplicate,
            "uploadCount": self.upload_count,
            "remainingUploads": self.remaining_uploads,
            "captchaRequired": self.captcha_required,
        }
        if self.original_timestamp is not None:
            data["originalTimestamp"] = self.original_timestamp
        return data


def generate_short_code(length: int) -> str:
    # Collisions are not checked; a clash overwrites the older object
    return "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(length))


class IngestionPipeline:
    def __init__(
        self,
        config: Config,
        state_store: StateStore,
        content_store: ContentStore,
        dedup_index: DedupIndex,
        abuse_gate: AbuseGate,
        transcoder: Transcoder,
        expiry_manager: ExpiryManager,
        stats: StatsAggregator,
        *,
        clock: Callable[[], float] = time.time,
        code_factory: Optional[Callable[[int], str]] = None,
    ):
        self.config = config
        self.state = state_store
        self.content = content_store
        self.dedup = dedup_index
        self.gate = abuse_gate
        self.transcoder = transcoder
        self.expiry = expiry_manager
        self.stats = stats
        self.clock = clock
        self.code_factory = code_factory or generate_short_code

    def validate(self, declared_content_type: Optional[str], file_size: Optional[int]) -> None:
        """Cheap checks on the declared type and size; runs before any byte is hashed."""
        if not (declared_content_type or "").lower().startswith("image/"):
            raise InvalidFileTypeError()
        if file_size is not None and file_size > self.config.max_upload_bytes:
            limit_mb = self.config.max_upload_bytes // (1024 * 1024)
            raise FileTooLargeError(f"File size exceeds {limit_mb}MB limit")

    def public_url(self, file_name: str) -> str:
        return f"{self.config.public_base_url.rstrip('/')}/{file_name}"

    async def ingest(
        self,
        file_bytes: Optional[bytes],
        declared_content_type: Optional[str],
        file_size: Optional[int],
        requested_expiry_days: int,
        captcha_token: Optional[str],
        client_ip: str,
        user_agent: str,
    ) -> IngestResult:
        if file_bytes is None:
            raise MissingFileError()
        self.validate(declared_content_type, file_size)
        actual_size = len(file_bytes)
        if actual_size == 0:
            raise MissingFileError("Uploaded file is empty")
        if actual_size != file_size:
            self.validate(declared_content_type, actual_size)

        digest = content_hash(file_bytes)
        duplicate = await self._dedup_hit(digest, actual_size, declared_content_type or "")
        if duplicate is not None:
            get_metrics_collector().record_upload("duplicate")
            return duplicate

        decision = await self.gate.evaluate(client_ip, captcha_token)

        stored_size = await self.stats.total_stored_size()
        if stored_size >= self.config.capacity_threshold_bytes():
            logger.warning(f"Rejecting upload, storage nearly full: {stored_size}/{self.config.storage_limit_bytes}")
            raise StorageFullError()

        transcoded = await self.transcoder.transcode(file_bytes, actual_size, declared_content_type or "")

        code = self.code_factory(self.config.short_code_length)
        file_name = f"{code}.{self.config.output_extension}"
        url = self.public_url(file_name)
        now = self.clock()
        now_ms = epoch_ms(now)
        expiry_days = max(int(requested_expiry_days or 0), 0)
        expiry_ms = now_ms + expiry_days * DAY_MS if expiry_days > 0 else None

        try:
            await self.content.put(file_name, transcoded.data, transcoded.content_type)
            metadata = ObjectMetadata(
                code=code,
                file_name=file_name,
                expiry_time=expiry_ms,
                expiration_days=expiry_days,
                upload_time=now_ms,
                size=len(transcoded.data),
                original_size=actual_size,
                content_type=transcoded.content_type,
                uploader_ip=client_ip,
                user_agent=user_agent,
            )
            await self.state.put(
                metadata_key(file_name), metadata.to_json(), ttl_seconds=self._metadata_ttl(expiry_days)
            )
            await self.dedup.record_new(digest, url=url, code=code, file_name=file_name)
        except Exception as e:
            logger.exception(f"Persisting upload failed file={file_name}")
            raise PersistenceError(f"Upload failed: {e}") from e

        await self.stats.record_ingestion(len(transcoded.data), 1)
        new_count = await self.gate.record_upload(decision)

        get_metrics_collector().record_upload("stored", stored_bytes=len(transcoded.data))
        logger.info(
            f"Stored upload file={file_name} ip={client_ip} size={actual_size}->{len(transcoded.data)} "
            f"transcoded={transcoded.transcoded} expiry_days={expiry_days} daily_count={new_count}"
        )

        return IngestResult(
            url=url,
            code=code,
            file_name=file_name,
            size=len(transcoded.data),
            content_type=transcoded.content_type,
            timestamp=utc_timestamp(now),
            expiry_epoch_ms=expiry_ms,
            expiration_days=expiry_days or None,
            duplicate=False,
            upload_count=1,
            remaining_uploads=self.gate.remaining_uploads(new_count),
            captcha_required=self.gate.challenge_due(new_count),
        )

    def _metadata_ttl(self, expiry_days: int) -> int:
        if expiry_days <= 0:
            return self.config.permanent_metadata_ttl_seconds
        # Outlive the expiry so the sweep can still see the record once it is due
        return expiry_days * 24 * 60 * 60 + self.config.metadata_ttl_grace_seconds

    async def _dedup_hit(self, digest: str, size: int, declared_type: str) -> Optional[IngestResult]:
        record = await self.dedup.lookup(digest)
        if record is None:
            return None

        # The index outlives objects; only trust it while the object's metadata says it is live
        metadata = await self.expiry.load_metadata(record.file_name)
        if metadata is None or metadata.is_expired(epoch_ms(self.clock())):
            logger.info(f"Dedup record points at a missing or expired object, ingesting fresh file={record.file_name}")
            await self.dedup.forget(digest)
            return None

        refreshed = await self.dedup.record_repeat(digest, record)
        return IngestResult(
            url=refreshed.url,
            code=refreshed.code,
            file_name=refreshed.file_name,
            size=metadata.size or size,
            content_type=metadata.content_type or declared_type,
            timestamp=refreshed.last_upload_time or utc_timestamp(self.clock()),
            original_timestamp=refreshed.timestamp,
            expiry_epoch_ms=metadata.expiry_time,
            expiration_days=metadata.expiration_days or None,
            duplicate=True,
            upload_count=refreshed.upload_count,
        )
