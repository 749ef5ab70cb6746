from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace

import pytest

from app.core.config import SETTINGS
from app.repos.repositories import wallet_repo
from app.services import wallet_service
from app.services.cache import cache_service
from app.services.errors import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tests.conftest import admin_ctx, make_ctx


def _wallet(user_id: str = "test-user"):
    return asyncio.run(wallet_service.get_or_create_wallet(make_ctx(user_id)))


def _apply(wallet_id, type: str, amount: int, **kwargs):
    return asyncio.run(
        wallet_service.apply_transaction(make_ctx(), wallet_id, type, amount, **kwargs)
    )


def _balance(wallet_id) -> int:
    return asyncio.run(wallet_repo.get(wallet_id)).balance


# ---- wallets ----


def test_get_or_create_wallet_is_stable() -> None:
    first = _wallet()
    second = _wallet()
    assert first.id == second.id
    assert first.balance == 0
    assert first.currency == "IRR"
    assert first.status == "active"


def test_unknown_wallet_not_found() -> None:
    with pytest.raises(NotFoundError):
        _apply(uuid.uuid4(), "deposit", 100)


# ---- ledger ----


def test_deposit_then_withdraw_moves_balance() -> None:
    wallet = _wallet()
    deposit = _apply(wallet.id, "deposit", 100_000)
    withdrawal = _apply(wallet.id, "withdrawal", 30_000)

    assert (deposit.balance_before, deposit.balance_after) == (0, 100_000)
    assert (withdrawal.balance_before, withdrawal.balance_after) == (100_000, 70_000)
    assert (deposit.sequence, withdrawal.sequence) == (1, 2)
    assert _balance(wallet.id) == 70_000


def test_overdraw_rejected_and_nothing_written() -> None:
    wallet = _wallet()
    _apply(wallet.id, "deposit", 50_000)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        _apply(wallet.id, "withdrawal", 60_000)

    assert exc_info.value.code == "INSUFFICIENT_BALANCE"
    assert "requested 60000, available 50000" in exc_info.value.message
    assert _balance(wallet.id) == 50_000
    page = asyncio.run(wallet_service.list_transactions(make_ctx(), wallet.id))
    assert page.total == 1


def test_purchase_of_exact_balance_allowed() -> None:
    wallet = _wallet()
    _apply(wallet.id, "deposit", 25_000)
    _apply(wallet.id, "purchase", 25_000)
    assert _balance(wallet.id) == 0


@pytest.mark.parametrize("amount", [0, -5, True])
def test_non_positive_amount_rejected(amount) -> None:
    wallet = _wallet()
    with pytest.raises(ValidationError):
        _apply(wallet.id, "deposit", amount)


def test_unknown_type_rejected() -> None:
    wallet = _wallet()
    with pytest.raises(ValidationError):
        _apply(wallet.id, "gift", 100)


def test_inactive_wallet_rejects_writes() -> None:
    wallet = _wallet()
    asyncio.run(wallet_service.set_status(admin_ctx(), wallet.id, "suspended"))
    with pytest.raises(ConflictError) as exc_info:
        _apply(wallet.id, "deposit", 100)
    assert exc_info.value.code == "WALLET_INACTIVE"


def test_set_status_admin_only() -> None:
    wallet = _wallet()
    with pytest.raises(PermissionDeniedError):
        asyncio.run(wallet_service.set_status(make_ctx(), wallet.id, "blocked"))
    with pytest.raises(ValidationError):
        asyncio.run(wallet_service.set_status(admin_ctx(), wallet.id, "frozen"))


# ---- idempotency ----


def test_reference_replay_returns_original() -> None:
    wallet = _wallet()
    first = _apply(wallet.id, "deposit", 40_000, reference_id="ref-1")
    again = _apply(wallet.id, "deposit", 40_000, reference_id="ref-1")
    assert again.id == first.id
    assert _balance(wallet.id) == 40_000


def test_reference_reuse_with_other_amount_rejected() -> None:
    wallet = _wallet()
    _apply(wallet.id, "deposit", 40_000, reference_id="ref-1")
    with pytest.raises(ConflictError) as exc_info:
        _apply(wallet.id, "deposit", 41_000, reference_id="ref-1")
    assert exc_info.value.code == "REFERENCE_MISMATCH"


# ---- compare-and-swap ----


def test_cas_conflict_is_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    wallet = _wallet()
    real_append = wallet_repo.append
    calls = {"n": 0}

    async def flaky_append(tx, expected_version):
        calls["n"] += 1
        if calls["n"] == 1:
            return False
        return await real_append(tx, expected_version)

    monkeypatch.setattr(wallet_repo, "append", flaky_append)
    tx = _apply(wallet.id, "deposit", 10_000)

    assert calls["n"] == 2
    assert tx.balance_after == 10_000
    assert _balance(wallet.id) == 10_000


def test_cas_retries_exhausted(monkeypatch: pytest.MonkeyPatch) -> None:
    wallet = _wallet()
    calls = {"n": 0}

    async def always_stale(tx, expected_version):
        calls["n"] += 1
        return False

    monkeypatch.setattr(wallet_repo, "append", always_stale)
    with pytest.raises(ConflictError) as exc_info:
        _apply(wallet.id, "deposit", 10_000)

    assert exc_info.value.code == "CAS_EXHAUSTED"
    assert calls["n"] == SETTINGS.wallet_cas_max_retries
    assert _balance(wallet.id) == 0


def test_concurrent_deposits_all_land() -> None:
    wallet = _wallet()

    async def run() -> None:
        await asyncio.gather(
            *(
                wallet_service.apply_transaction(make_ctx(), wallet.id, "deposit", 1_000)
                for _ in range(10)
            )
        )

    asyncio.run(run())
    assert _balance(wallet.id) == 10_000
    audit = asyncio.run(wallet_service.audit(admin_ctx(), wallet.id))
    assert audit.is_consistent


# ---- reads ----


def test_list_transactions_newest_first_with_filters() -> None:
    wallet = _wallet()
    _apply(wallet.id, "deposit", 5_000)
    _apply(wallet.id, "purchase", 1_000)
    _apply(wallet.id, "deposit", 2_000)

    page = asyncio.run(
        wallet_service.list_transactions(make_ctx(), wallet.id, page=1, limit=2)
    )
    assert page.total == 3
    assert page.pages == 2
    assert [t.sequence for t in page.items] == [3, 2]

    deposits = asyncio.run(
        wallet_service.list_transactions(make_ctx(), wallet.id, type="deposit")
    )
    assert deposits.total == 2


def test_list_transactions_validates_paging() -> None:
    wallet = _wallet()
    with pytest.raises(ValidationError):
        asyncio.run(wallet_service.list_transactions(make_ctx(), wallet.id, limit=500))
    with pytest.raises(ValidationError):
        asyncio.run(wallet_service.list_transactions(make_ctx(), wallet.id, page=0))


def test_stats_cached_until_next_transaction() -> None:
    wallet = _wallet()
    _apply(wallet.id, "deposit", 8_000)
    _apply(wallet.id, "purchase", 3_000)

    stats = asyncio.run(wallet_service.get_stats(make_ctx(), wallet.id))
    assert (stats.total_credits, stats.total_debits) == (8_000, 3_000)
    assert stats.transaction_count == 2
    assert stats.recent_transactions[0].type == "purchase"

    key = f"wallet_stats:{wallet.id}:5"
    assert asyncio.run(cache_service.get(key)) is not None
    cached = asyncio.run(wallet_service.get_stats(make_ctx(), wallet.id))
    assert cached == stats

    _apply(wallet.id, "deposit", 1_000)
    assert asyncio.run(cache_service.get(key)) is None
    fresh = asyncio.run(wallet_service.get_stats(make_ctx(), wallet.id))
    assert fresh.balance == 6_000


# ---- audit and refund ----


def test_audit_detects_tampered_balance() -> None:
    wallet = _wallet()
    _apply(wallet.id, "deposit", 9_000)
    _apply(wallet.id, "withdrawal", 4_000)

    clean = asyncio.run(wallet_service.audit(admin_ctx(), wallet.id))
    assert clean.is_consistent
    assert clean.calculated_balance == 5_000

    wallet_repo._wallets[wallet.id] = replace(
        wallet_repo._wallets[wallet.id], balance=7_000
    )
    dirty = asyncio.run(wallet_service.audit(admin_ctx(), wallet.id))
    assert dirty.is_consistent is False
    assert dirty.discrepancy == 2_000


def test_audit_admin_only() -> None:
    wallet = _wallet()
    with pytest.raises(PermissionDeniedError):
        asyncio.run(wallet_service.audit(make_ctx(), wallet.id))


def test_refund_purchase_credits_back_once() -> None:
    wallet = _wallet()
    _apply(wallet.id, "deposit", 10_000)
    purchase = _apply(wallet.id, "purchase", 6_000)

    refund = asyncio.run(wallet_service.refund(admin_ctx(), purchase.id, reason="cancelled"))
    assert refund.type == "refund"
    assert refund.reference_id == f"refund_{purchase.id}"
    assert _balance(wallet.id) == 10_000

    again = asyncio.run(wallet_service.refund(admin_ctx(), purchase.id))
    assert again.id == refund.id
    assert _balance(wallet.id) == 10_000


def test_refund_deposit_is_a_withdrawal() -> None:
    wallet = _wallet()
    deposit = _apply(wallet.id, "deposit", 10_000)
    refund = asyncio.run(wallet_service.refund(admin_ctx(), deposit.id, amount=4_000))
    assert refund.type == "withdrawal"
    assert _balance(wallet.id) == 6_000


def test_second_partial_refund_reports_already_refunded() -> None:
    wallet = _wallet()
    _apply(wallet.id, "deposit", 10_000)
    purchase = _apply(wallet.id, "purchase", 8_000)
    asyncio.run(wallet_service.refund(admin_ctx(), purchase.id, amount=3_000))

    with pytest.raises(ConflictError) as exc_info:
        asyncio.run(wallet_service.refund(admin_ctx(), purchase.id, amount=2_000))
    assert exc_info.value.code == "ALREADY_REFUNDED"
    assert "already refunded" in exc_info.value.message
    assert _balance(wallet.id) == 5_000

def test_refund_rules() -> None:
    wallet = _wallet()
    deposit = _apply(wallet.id, "deposit", 10_000)
    with pytest.raises(PermissionDeniedError):
        asyncio.run(wallet_service.refund(make_ctx(), deposit.id))
    with pytest.raises(ValidationError):
        asyncio.run(wallet_service.refund(admin_ctx(), deposit.id, amount=20_000))
    with pytest.raises(NotFoundError):
        asyncio.run(wallet_service.refund(admin_ctx(), uuid.uuid4()))
