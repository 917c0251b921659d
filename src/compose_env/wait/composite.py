"""Composite wait strategy bounded by one outer timeout."""

from __future__ import annotations

import asyncio
import logging

from src.compose_env.wait.base import WaitStrategy, WaitTarget

logger = logging.getLogger(__name__)


class WaitAllStrategy(WaitStrategy):
    """Run every member strategy concurrently against the same target.

    The composite's ``startup_timeout`` replaces the timeout of every
    member, on adding and whenever it changes.  One deadline is computed
    when waiting begins and handed to each member, so all of them are
    bound by the same instant.  If any member fails the others are
    cancelled.
    """

    def __init__(self, startup_timeout: float | None = None) -> None:
        super().__init__()
        if startup_timeout is not None:
            self.startup_timeout = float(startup_timeout)
        self._strategies: list[WaitStrategy] = []

    def with_strategy(self, strategy: WaitStrategy) -> WaitAllStrategy:
        strategy.with_startup_timeout(self.startup_timeout)
        self._strategies.append(strategy)
        return self

    def with_startup_timeout(self, seconds: float) -> WaitAllStrategy:
        super().with_startup_timeout(seconds)
        for strategy in self._strategies:
            strategy.with_startup_timeout(seconds)
        return self

    @property
    def strategies(self) -> list[WaitStrategy]:
        return list(self._strategies)

    async def wait_until_ready(
        self, target: WaitTarget, deadline: float | None = None
    ) -> None:
        if not self._strategies:
            return
        until = self.effective_deadline(deadline)
        tasks = [
            asyncio.ensure_future(strategy.wait_until_ready(target, until))
            for strategy in self._strategies
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    def describe(self) -> str:
        members = ", ".join(s.describe() for s in self._strategies)
        return f"all of [{members}]"
