"""Notification dispatch and the worker loop."""

from __future__ import annotations

import asyncio
import logging

import pytest

from app import worker
from app.core.metrics import NOTIFICATION_DISPATCH_FAILURES
from app.services import notifications
from app.services.notifications import (
    ENROLLMENT_CONFIRMATION_QUEUE,
    WALLET_RECEIPT_QUEUE,
)
from app.services.task_queue import task_queue


def _failures(queue: str) -> float:
    return NOTIFICATION_DISPATCH_FAILURES.labels(queue_name=queue)._value.get()


def test_enrollment_confirmation_enqueued() -> None:
    ok = asyncio.run(
        notifications.send_enrollment_confirmation(
            user_id="u-1", course_id="c-1", enrollment_id="e-1", final_price=800_000
        )
    )
    assert ok is True
    task = asyncio.run(task_queue.dequeue(ENROLLMENT_CONFIRMATION_QUEUE))
    assert task is not None
    assert task.payload["final_price"] == 800_000
    assert task.payload["group_id"] is None


def test_failed_enqueue_is_counted_not_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken(queue: str, payload: dict):
        raise ConnectionError("redis down")

    monkeypatch.setattr(task_queue, "enqueue", broken)
    before = _failures(WALLET_RECEIPT_QUEUE)

    ok = asyncio.run(
        notifications.send_wallet_receipt(
            user_id="u-1", wallet_id="w-1", transaction_id="t-1", amount=1, new_balance=1
        )
    )
    assert ok is False
    assert _failures(WALLET_RECEIPT_QUEUE) == before + 1


# ---- worker ----


def test_process_one_empty_queue() -> None:
    assert asyncio.run(worker.process_one(WALLET_RECEIPT_QUEUE, timeout=0)) is False


def test_process_one_runs_handler(caplog: pytest.LogCaptureFixture) -> None:
    asyncio.run(
        notifications.send_wallet_receipt(
            user_id="u-1",
            wallet_id="w-1",
            transaction_id="t-1",
            amount=100_000,
            new_balance=100_000,
            ref_id="100000001",
        )
    )
    with caplog.at_level(logging.INFO, logger="app.worker"):
        assert asyncio.run(worker.process_one(WALLET_RECEIPT_QUEUE, timeout=0)) is True

    messages = [r.getMessage() for r in caplog.records]
    assert any("Wallet receipt user=u-1" in m and "ref=100000001" in m for m in messages)
    assert asyncio.run(task_queue.queue_length(WALLET_RECEIPT_QUEUE)) == 0


def test_failing_handler_does_not_stop_worker(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    async def broken(payload: dict) -> None:
        raise KeyError("user_id")

    monkeypatch.setitem(worker.HANDLERS, ENROLLMENT_CONFIRMATION_QUEUE, broken)
    asyncio.run(
        notifications.send_enrollment_confirmation(
            user_id="u-1", course_id="c-1", enrollment_id="e-1", final_price=1
        )
    )
    with caplog.at_level(logging.ERROR, logger="app.worker"):
        assert asyncio.run(worker.process_one(ENROLLMENT_CONFIRMATION_QUEUE, timeout=0))

    assert any("failed" in r.getMessage() for r in caplog.records)


def test_every_queue_has_a_handler() -> None:
    assert set(worker.HANDLERS) == {ENROLLMENT_CONFIRMATION_QUEUE, WALLET_RECEIPT_QUEUE}
