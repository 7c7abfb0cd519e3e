"""
Turnstile client for verifying CAPTCHA tokens.

The oracle is Cloudflare's ``siteverify`` endpoint: POST ``{secret, response,
remote_ip}`` and receive ``{success, error-codes}``. Tokens are single-use on
the Cloudflare side as well, so requests are never retried.
"""

import logging
from typing import Any
from typing import Protocol

import httpx
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


logger = logging.getLogger(__name__)


class TurnstileResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = False
    error_codes: list[str] = Field(default_factory=list, alias="error-codes")
    hostname: str | None = None
    challenge_ts: str | None = None


class CaptchaServiceError(Exception):
    """Raised when the verification service cannot be reached or answers garbage."""

    pass


class CaptchaVerifier(Protocol):
    async def verify(self, token: str, remote_ip: str) -> TurnstileResult: ...


class TurnstileClient:
    def __init__(
        self,
        secret_key: str,
        verify_url: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.secret_key = secret_key
        self.verify_url = verify_url
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            transport=transport,
        )

    async def __aenter__(self) -> "TurnstileClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def verify(self, token: str, remote_ip: str) -> TurnstileResult:
        payload = {
            "secret": self.secret_key,
            "response": token,
            "remote_ip": remote_ip,
        }
        try:
            response = await self._client.post(self.verify_url, json=payload)
            response.raise_for_status()
            result = TurnstileResult.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Turnstile verification request failed: {e}")
            raise CaptchaServiceError(str(e)) from e

        logger.info(f"Turnstile verify result: success={result.success} error_codes={result.error_codes}")
        return result
