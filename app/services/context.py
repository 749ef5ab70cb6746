from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from app.models.principal import Principal
from app.repos.repositories import Repositories

PostCommitAction = Callable[[], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ServiceContext:
    """Request-scoped state handed to every service call.

    Built once per request by ``app.api.dependencies.get_context``.
    Services read the caller and the repositories from here instead of
    from module globals, and queue best-effort follow-ups (notifications)
    with ``defer``; those run only after the request's writes commit.
    """

    principal: Principal
    repos: Repositories
    request_id: str = "-"
    post_commit: list[PostCommitAction] = field(default_factory=list)

    @property
    def user_id(self) -> str:
        return self.principal.user_id

    @property
    def is_admin(self) -> bool:
        return self.principal.is_platform_admin()

    def defer(self, action: PostCommitAction) -> None:
        self.post_commit.append(action)

    async def run_post_commit(self) -> None:
        actions = list(self.post_commit)
        self.post_commit.clear()
        for action in actions:
            await action()


def now() -> int:
    """Current time as integer epoch seconds."""
    return int(time.time())
