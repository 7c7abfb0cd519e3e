import logging
from typing import Optional

from fastapi import Request
from fastapi import Response
from opentelemetry import metrics


logger = logging.getLogger(__name__)


class MetricsCollector:
    def __init__(self) -> None:
        self.meter = metrics.get_meter(__name__)
        self._setup_metrics()

    def _setup_metrics(self) -> None:
        self.http_requests_total = self.meter.create_counter(
            name="http_requests_total", description="Total number of HTTP requests", unit="1"
        )

        self.http_request_duration = self.meter.create_histogram(
            name="http_request_duration_seconds", description="HTTP request duration in seconds", unit="s"
        )

        self.uploads_total = self.meter.create_counter(
            name="img2url_uploads_total", description="Upload attempts by outcome", unit="1"
        )

        self.upload_bytes_stored = self.meter.create_counter(
            name="img2url_upload_bytes_stored_total", description="Bytes written to the content store", unit="bytes"
        )

        self.transcode_total = self.meter.create_counter(
            name="img2url_transcode_total", description="Transcode attempts by result", unit="1"
        )

        self.captcha_verifications_total = self.meter.create_counter(
            name="img2url_captcha_verifications_total", description="Turnstile verifications by result", unit="1"
        )

        self.deliveries_total = self.meter.create_counter(
            name="img2url_deliveries_total", description="Image deliveries by status", unit="1"
        )

        self.objects_expired_total = self.meter.create_counter(
            name="img2url_objects_expired_total", description="Objects removed by expiry", unit="1"
        )

        self.sweep_duration = self.meter.create_histogram(
            name="img2url_sweep_duration_seconds", description="Duration of expiry sweeps", unit="s"
        )

    def record_http_request(
        self,
        request: Request,
        response: Response,
        duration: float,
        handler: Optional[str] = None,
    ) -> None:
        attributes = {
            "method": request.method,
            "handler": handler or request.url.path,
            "status_code": str(response.status_code),
        }
        self.http_requests_total.add(1, attributes=attributes)
        self.http_request_duration.record(duration, attributes=attributes)

    def record_upload(self, outcome: str, stored_bytes: int = 0) -> None:
        self.uploads_total.add(1, attributes={"outcome": outcome})
        if stored_bytes > 0:
            self.upload_bytes_stored.add(stored_bytes)

    def record_transcode(self, success: bool) -> None:
        self.transcode_total.add(1, attributes={"success": str(success).lower()})

    def record_captcha_verification(self, result: str) -> None:
        self.captcha_verifications_total.add(1, attributes={"result": result})

    def record_delivery(self, status_code: int) -> None:
        self.deliveries_total.add(1, attributes={"status_code": str(status_code)})

    def record_expiry(self, trigger: str) -> None:
        self.objects_expired_total.add(1, attributes={"trigger": trigger})

    def record_sweep(self, duration: float, success: bool) -> None:
        self.sweep_duration.record(duration, attributes={"success": str(success).lower()})


class NullMetricsCollector:
    def record_http_request(self, *args: object, **kwargs: object) -> None:
        pass

    def record_upload(self, *args: object, **kwargs: object) -> None:
        pass

    def record_transcode(self, *args: object, **kwargs: object) -> None:
        pass

    def record_captcha_verification(self, *args: object, **kwargs: object) -> None:
        pass

    def record_delivery(self, *args: object, **kwargs: object) -> None:
        pass

    def record_expiry(self, *args: object, **kwargs: object) -> None:
        pass

    def record_sweep(self, *args: object, **kwargs: object) -> None:
        pass


_metrics_collector: MetricsCollector | NullMetricsCollector = NullMetricsCollector()


def get_metrics_collector() -> MetricsCollector | NullMetricsCollector:
    return _metrics_collector


def set_metrics_collector(collector: MetricsCollector | NullMetricsCollector) -> None:
    global _metrics_collector
    _metrics_collector = collector
