"""Records persisted in the state store as JSON strings.

Field names use the camelCase wire format shared with existing clients; epoch
fields are milliseconds since the Unix epoch.
"""

from typing import Any
from typing import Optional

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import computed_field
from pydantic import Field


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ObjectMetadata(_Record):
    code: str
    file_name: str = Field(alias="fileName")
    expiry_time: Optional[int] = Field(default=None, alias="expiryTime")
    expiration_days: int = Field(default=0, alias="expiration")
    upload_time: int = Field(alias="uploadTime")
    size: int = 0
    original_size: int = Field(default=0, alias="originalSize")
    content_type: str = Field(default="image/webp", alias="contentType")
    uploader_ip: str = Field(default="unknown", alias="uploaderIP")
    user_agent: str = Field(default="unknown", alias="userAgent")

    def is_expired(self, now_ms: int) -> bool:
        return self.expiry_time is not None and now_ms > self.expiry_time


class HashIndexRecord(_Record):
    url: str
    code: str
    file_name: str = Field(alias="fileName")
    timestamp: str
    upload_count: int = Field(default=1, alias="uploadCount")
    last_upload_time: Optional[str] = Field(default=None, alias="lastUploadTime")


class GlobalStatsRecord(_Record):
    total_size: int = Field(default=0, alias="totalSize")
    count: int = 0
    last_update: int = Field(default=0, alias="lastUpdate")


class StatsCacheRecord(_Record):
    data: dict[str, Any]
    last_update: int = Field(alias="lastUpdate")


class StatsView(_Record):
    count: int
    total_size: int = Field(alias="totalSize")
    total_size_formatted: str = Field(alias="totalSizeFormatted")
    storage_usage: float = Field(alias="storageUsage")
    read_count: int = Field(alias="readCount")
    read_limit: int = Field(alias="readLimit")
    read_usage: float = Field(alias="readUsage")
    limits: dict[str, Any]
    warnings: list[str] = Field(default_factory=list)

    # "images" is the name the web client reads
    @computed_field  # type: ignore[prop-decorator]
    @property
    def images(self) -> int:
        return self.count

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
