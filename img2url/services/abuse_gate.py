"""Per-IP abuse controls for uploads.

Three independent mechanisms, all keyed on the client IP:

- a daily quota whose count selects a tier (NORMAL, CHALLENGE, BLOCKED);
- a fixed per-minute burst bucket;
- single-use Turnstile tokens, remembered by hash for a few minutes after a
  successful verification so the same token cannot be replayed.

Every counter is read, computed locally and written back through the state
store. Concurrent uploads from one IP can therefore under-count by the size of
the race window; that is accepted.
"""

import hashlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable
from typing import Optional

from img2url.config import Config
from img2url.errors import CaptchaConfigError
from img2url.errors import CaptchaFailedError
from img2url.errors import CaptchaRequiredError
from img2url.errors import CaptchaUnavailableError
from img2url.errors import CaptchaUsedError
from img2url.errors import DailyLimitExceededError
from img2url.errors import UploadRateLimitedError
from img2url.monitoring import get_metrics_collector
from img2url.services.captcha_client import CaptchaServiceError
from img2url.services.captcha_client import CaptchaVerifier
from img2url.stores.state_store import StateStore
from img2url.utils import epoch_minute
from img2url.utils import parse_int
from img2url.utils import utc_date


logger = logging.getLogger(__name__)


class QuotaTier(str, Enum):
    NORMAL = "normal"
    CHALLENGE = "challenge"
    BLOCKED = "blocked"


@dataclass
class GateDecision:
    client_ip: str
    daily_count: int
    tier: QuotaTier
    # Day the count was read under; the increment lands on the same day
    quota_key: str
    token_consumed: bool = False


class AbuseGate:
    def __init__(
        self,
        config: Config,
        state_store: StateStore,
        captcha_verifier: Optional[CaptchaVerifier],
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.state = state_store
        self.captcha_verifier = captcha_verifier
        self.clock = clock

    def _quota_key(self, client_ip: str) -> str:
        return f"uploads:{utc_date(self.clock())}:{client_ip}"

    def _burst_key(self, client_ip: str) -> str:
        return f"upload_rate:{client_ip}:{epoch_minute(self.clock())}"

    @staticmethod
    def _token_key(token: str) -> str:
        # Tokens can be long; hash them to keep keys short
        return f"captcha_used:{hashlib.sha256(token.encode('utf-8')).hexdigest()}"

    def classify(self, daily_count: int) -> QuotaTier:
        if daily_count >= self.config.daily_upload_limit:
            return QuotaTier.BLOCKED
        if self.challenge_due(daily_count):
            return QuotaTier.CHALLENGE
        return QuotaTier.NORMAL

    def challenge_due(self, daily_count: int) -> bool:
        return daily_count >= self.config.captcha_threshold and daily_count % self.config.captcha_interval == 0

    async def current_count(self, client_ip: str) -> int:
        return parse_int(await self.state.get(self._quota_key(client_ip)))

    async def evaluate(self, client_ip: str, captcha_token: Optional[str]) -> GateDecision:
        """Run the gate for one upload attempt; raises an ``UploadError`` subclass on rejection.

        Order: hard block, burst bucket, then the challenge/token check. The hard
        block and the burst check run before any token is looked at so a valid
        token is never consumed by a request that is rejected anyway.
        """
        quota_key = self._quota_key(client_ip)
        daily_count = parse_int(await self.state.get(quota_key))
        tier = self.classify(daily_count)

        if tier is QuotaTier.BLOCKED:
            logger.warning(f"Daily upload limit reached ip={client_ip} count={daily_count}")
            raise DailyLimitExceededError(
                f"Daily upload limit exceeded ({self.config.daily_upload_limit} uploads per IP)"
            )

        await self._check_burst(client_ip)

        if tier is QuotaTier.CHALLENGE and not captcha_token:
            logger.info(f"Captcha challenge required ip={client_ip} count={daily_count}")
            raise CaptchaRequiredError()

        decision = GateDecision(client_ip=client_ip, daily_count=daily_count, tier=tier, quota_key=quota_key)
        if captcha_token:
            await self._consume_token(captcha_token, client_ip)
            decision.token_consumed = True
        return decision

    async def _check_burst(self, client_ip: str) -> None:
        key = self._burst_key(client_ip)
        count = parse_int(await self.state.get(key))
        if count >= self.config.upload_rate_per_minute:
            logger.warning(f"Upload burst limit exceeded ip={client_ip} count={count}")
            raise UploadRateLimitedError()
        await self.state.put(key, str(count + 1), ttl_seconds=self.config.rate_window_seconds)

    async def _consume_token(self, token: str, client_ip: str) -> None:
        if not self.config.turnstile_secret_key or self.captcha_verifier is None:
            logger.error("Captcha token supplied but Turnstile is not configured")
            raise CaptchaConfigError()

        used_key = self._token_key(token)
        if await self.state.get(used_key):
            get_metrics_collector().record_captcha_verification("replayed")
            raise CaptchaUsedError()

        try:
            result = await self.captcha_verifier.verify(token, client_ip)
        except CaptchaServiceError as e:
            get_metrics_collector().record_captcha_verification("unavailable")
            raise CaptchaUnavailableError() from e

        if not result.success:
            get_metrics_collector().record_captcha_verification("failed")
            reasons = ", ".join(result.error_codes) or "Unknown error"
            raise CaptchaFailedError(f"Captcha verification failed: {reasons}")

        await self.state.put(used_key, "1", ttl_seconds=self.config.captcha_token_ttl_seconds)
        get_metrics_collector().record_captcha_verification("passed")

    async def record_upload(self, decision: GateDecision) -> int:
        """Count a successful fresh upload against the daily quota and return the new count."""
        new_count = decision.daily_count + 1
        await self.state.put(decision.quota_key, str(new_count), ttl_seconds=self.config.quota_ttl_seconds)
        return new_count

    def remaining_uploads(self, daily_count: int) -> int:
        return max(self.config.daily_upload_limit - daily_count, 0)
