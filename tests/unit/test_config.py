import pytest

from img2url.config import GIB
from img2url.config import MIB
from img2url.config import Config
from img2url.config import get_config
from img2url.utils import format_size
from img2url.utils import parse_int
from img2url.utils import utc_date
from img2url.utils import utc_timestamp


def test_defaults(monkeypatch):
    for key in ("MAX_UPLOAD_BYTES", "DAILY_UPLOAD_LIMIT", "CAPTCHA_THRESHOLD", "CAPTCHA_INTERVAL", "STORAGE_LIMIT_BYTES"):
        monkeypatch.delenv(key, raising=False)

    config = Config()

    assert config.max_upload_bytes == 10 * MIB
    assert config.daily_upload_limit == 500
    assert config.captcha_threshold == 300
    assert config.captcha_interval == 50
    assert config.storage_limit_bytes == 10 * GIB
    assert config.capacity_threshold_bytes() == 10 * GIB * 0.95


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DAILY_UPLOAD_LIMIT", "20")
    monkeypatch.setenv("LABEL_PASSTHROUGH_WITH_ORIGINAL_TYPE", "true")

    config = Config()

    assert config.daily_upload_limit == 20
    assert config.label_passthrough_with_original_type is True


def test_get_config_rejects_blank_environment(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", " ")

    with pytest.raises(ValueError):
        get_config()


def test_get_config_rejects_zero_captcha_interval(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("CAPTCHA_INTERVAL", "0")

    with pytest.raises(ValueError):
        get_config()


@pytest.mark.parametrize(
    "value,expected",
    [(0, "0 B"), (1023, "1023 B"), (1536, "1.5 KB"), (5 * MIB, "5.0 MB"), (3 * GIB, "3.00 GB")],
)
def test_format_size(value, expected):
    assert format_size(value) == expected


def test_parse_int():
    assert parse_int("7") == 7
    assert parse_int("abc") == 0
    assert parse_int(None, 5) == 5


def test_utc_helpers():
    assert utc_date(0) == "1970-01-01"
    assert utc_timestamp(86399) == "1970-01-01T23:59:59Z"
