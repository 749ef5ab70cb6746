from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.principal import Principal
from app.repos.repositories import Repositories, reset_in_memory
from app.services import payment_service, token_service
from app.services.cache import cache_service
from app.services.context import ServiceContext
from app.services.payment_gateway import InMemoryPaymentGateway
from app.services.task_queue import task_queue

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_repositories() -> None:
    """Empty every in-memory store between tests."""
    reset_in_memory()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_payment_gateway() -> None:
    if isinstance(payment_service.payment_gateway, InMemoryPaymentGateway):
        payment_service.payment_gateway.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token with default role (user)."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="test-admin", roles=["admin"])


# ---------------------------------------------------------------------------
# Service-level helpers
# ---------------------------------------------------------------------------


def make_ctx(user_id: str = "test-user", roles: set[str] | None = None) -> ServiceContext:
    """A ServiceContext over the in-memory repositories."""
    return ServiceContext(
        principal=Principal(user_id=user_id, roles=frozenset(roles or {"user"})),
        repos=Repositories.in_memory(),
    )


def admin_ctx() -> ServiceContext:
    return make_ctx("test-admin", {"admin"})
