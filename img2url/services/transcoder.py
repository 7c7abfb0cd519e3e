"""Normalize uploaded images to WebP.

Decoding untrusted input can fail in many ways (truncated files, unsupported
formats, decompression bombs). None of them may fail an upload: on any error
the original bytes are passed through and labelled with the canonical output
type.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass

from PIL import Image

from img2url.config import MIB
from img2url.config import Config
from img2url.monitoring import get_metrics_collector


logger = logging.getLogger(__name__)


@dataclass
class TranscodeResult:
    data: bytes
    content_type: str
    transcoded: bool
    quality: int | None = None


class Transcoder:
    def __init__(self, config: Config):
        self.config = config

    def quality_for(self, original_size: int) -> int:
        if original_size > 2 * MIB:
            return self.config.quality_low
        if original_size > 1 * MIB:
            return self.config.quality_medium
        return self.config.quality_high

    def _encode(self, data: bytes, quality: int) -> bytes:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            has_alpha = img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info)
            target_mode = "RGBA" if has_alpha else "RGB"
            converted = img if img.mode == target_mode else img.convert(target_mode)

            out = io.BytesIO()
            converted.save(out, format=self.config.output_format, quality=quality)
            return out.getvalue()

    async def transcode(self, data: bytes, original_size: int, declared_type: str = "") -> TranscodeResult:
        quality = self.quality_for(original_size)
        try:
            encoded = await asyncio.to_thread(self._encode, data, quality)
        except Exception as e:
            logger.warning(f"Image transcode failed, storing original bytes: {e}")
            get_metrics_collector().record_transcode(success=False)
            content_type = self.config.output_content_type
            if self.config.label_passthrough_with_original_type and declared_type:
                content_type = declared_type
            return TranscodeResult(data=data, content_type=content_type, transcoded=False)

        get_metrics_collector().record_transcode(success=True)
        if original_size:
            reduction = round((1 - len(encoded) / original_size) * 100)
            logger.info(f"Image converted to WebP: {original_size} -> {len(encoded)} bytes ({reduction}% reduction)")
        return TranscodeResult(
            data=encoded,
            content_type=self.config.output_content_type,
            transcoded=True,
            quality=quality,
        )
