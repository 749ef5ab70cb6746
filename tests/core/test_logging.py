from __future__ import annotations

import json
import logging
import sys

import pytest

from app.core.logging import (
    RequestIdFilter,
    _ContainerFormatter,
    _JsonFormatter,
    request_id_var,
    setup_logging,
)


def _record(level: int = logging.INFO, msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="app.services.wallet_service",
        level=level,
        pathname="wallet_service.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ---- setup_logging ----


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING


def test_setup_logging_defaults_to_info_for_unknown_level() -> None:
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


@pytest.mark.parametrize("name", ["uvicorn", "httpx", "httpcore", "sqlalchemy.engine"])
def test_setup_logging_quiets_third_party_at_debug(name: str) -> None:
    setup_logging("debug")
    assert logging.getLogger(name).level == logging.WARNING


def test_setup_logging_selects_json_formatter() -> None:
    setup_logging("info", json_format=True)
    (handler,) = logging.getLogger().handlers
    assert isinstance(handler.formatter, _JsonFormatter)
    setup_logging("info")


# ---- container format ----


def test_container_formatter_omits_location_below_warning() -> None:
    output = _ContainerFormatter().format(_record())
    assert "hello" in output
    assert "[wallet_service.py:" not in output


def test_container_formatter_adds_location_for_warning() -> None:
    output = _ContainerFormatter().format(_record(logging.WARNING, "insufficient balance"))
    assert "insufficient balance" in output
    assert "[wallet_service.py:42]" in output


def test_container_formatter_is_not_json() -> None:
    output = _ContainerFormatter().format(_record())
    with pytest.raises(json.JSONDecodeError):
        json.loads(output)


# ---- JSON format ----


def test_json_formatter_produces_valid_json() -> None:
    parsed = json.loads(_JsonFormatter().format(_record(msg="Ledger entry")))
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "app.services.wallet_service"
    assert parsed["message"] == "Ledger entry"
    assert "timestamp" in parsed


def test_json_formatter_lifts_request_and_domain_fields() -> None:
    record = _record(
        request_id="abc-123",
        path="/v1/payments/verify",
        wallet_id="7c1e...",
        authority="A00000000000000000000000000000000001",
        error_code="VERIFICATION_FAILED",
    )
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["request_id"] == "abc-123"
    assert parsed["path"] == "/v1/payments/verify"
    assert parsed["wallet_id"] == "7c1e..."
    assert parsed["authority"] == "A00000000000000000000000000000000001"
    assert parsed["error_code"] == "VERIFICATION_FAILED"


def test_json_formatter_skips_unset_fields() -> None:
    parsed = json.loads(_JsonFormatter().format(_record(group_id=None)))
    assert "group_id" not in parsed
    assert "wallet_id" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    try:
        raise ValueError("ledger broke")
    except ValueError:
        record = _record(logging.ERROR, "Write failed")
        record.exc_info = sys.exc_info()
        output = _JsonFormatter().format(record)
    parsed = json.loads(output)
    assert "ValueError: ledger broke" in parsed["exception"]


def test_container_formatter_appends_domain_fields_and_request_id() -> None:
    output = _ContainerFormatter().format(
        _record(msg="Ledger entry", wallet_id="w-1", request_id="req-9")
    )
    assert "Ledger entry wallet_id=w-1" in output
    assert "[req=req-9]" in output


# ---- request id filter ----


def test_request_id_filter_stamps_current_request() -> None:
    token = request_id_var.set("req-42")
    try:
        record = _record()
        assert RequestIdFilter().filter(record) is True
    finally:
        request_id_var.reset(token)
    assert record.request_id == "req-42"  # type: ignore[attr-defined]


def test_request_id_filter_keeps_explicit_value() -> None:
    token = request_id_var.set("outer")
    try:
        record = _record(request_id="explicit")
        RequestIdFilter().filter(record)
    finally:
        request_id_var.reset(token)
    assert record.request_id == "explicit"  # type: ignore[attr-defined]


def test_setup_logging_installs_filter_on_handler() -> None:
    setup_logging("info")
    (handler,) = logging.getLogger().handlers
    assert any(isinstance(f, RequestIdFilter) for f in handler.filters)
