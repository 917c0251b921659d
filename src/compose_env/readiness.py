"""Readiness aggregation across every declared service instance.

Each service instance gets at most one :class:`WaitAllStrategy` (its
*wait plan*), created lazily the first time a strategy is declared for it.
:meth:`ReadinessAggregator.wait_all` runs all plans concurrently against
one deadline computed when waiting starts.  Instances that were discovered
but never planned are considered ready; instances that were planned but
never discovered are a configuration error.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping

from src.compose_env.service_instance import ServiceInstanceId
from src.compose_env.wait.base import WaitStrategy, WaitTarget
from src.compose_env.wait.composite import WaitAllStrategy
from src.shared.errors import ConfigurationError, ReadinessTimeoutError, WaitTimeoutError

logger = logging.getLogger(__name__)


class ReadinessAggregator:
    """Owns the wait plans of one compose environment."""

    def __init__(self, startup_timeout: float) -> None:
        self.startup_timeout = float(startup_timeout)
        self._plans: dict[ServiceInstanceId, WaitAllStrategy] = {}

    def add(self, instance_id: ServiceInstanceId, strategy: WaitStrategy) -> None:
        plan = self._plans.get(instance_id)
        if plan is None:
            plan = WaitAllStrategy(self.startup_timeout)
            self._plans[instance_id] = plan
        plan.with_strategy(strategy)

    def set_startup_timeout(self, seconds: float) -> None:
        self.startup_timeout = float(seconds)
        for plan in self._plans.values():
            plan.with_startup_timeout(seconds)

    def plan_for(self, instance_id: ServiceInstanceId) -> WaitAllStrategy | None:
        return self._plans.get(instance_id)

    @property
    def planned_instances(self) -> set[ServiceInstanceId]:
        return set(self._plans)

    def validate(self, discovered: Mapping[ServiceInstanceId, WaitTarget]) -> None:
        """Fail if a wait plan names an instance that was never discovered."""
        missing = sorted(self.planned_instances - set(discovered))
        if missing:
            raise ConfigurationError(
                f"Services named {missing} do not exist, but wait conditions "
                "have been defined for them. This might mean that you "
                "misspelled the service name when defining the wait condition."
            )

    async def wait_all(self, discovered: Mapping[ServiceInstanceId, WaitTarget]) -> None:
        """Block until every planned instance is ready.

        Args:
            discovered: Instance id to container mapping from discovery.

        Raises:
            ConfigurationError: A planned instance was not discovered.
            ReadinessTimeoutError: The shared deadline elapsed; names the
                instances that had not become ready.
            ContainerExitedError: A container stopped while being awaited.
        """
        self.validate(discovered)
        deadline = time.monotonic() + self.startup_timeout
        tasks: dict[asyncio.Future[None], ServiceInstanceId] = {}
        for iid, plan in self._plans.items():
            logger.info("Waiting for %s: %s", iid, plan.describe())
            tasks[asyncio.ensure_future(plan.wait_until_ready(discovered[iid], deadline))] = iid

        not_ready: list[ServiceInstanceId] = []
        pending: set[asyncio.Future[None]] = set(tasks)
        try:
            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                done, pending = await asyncio.wait(
                    pending, timeout=remaining, return_when=asyncio.FIRST_EXCEPTION
                )
                fatal: BaseException | None = None
                for task in done:
                    exc = task.exception()
                    if exc is None:
                        logger.info("Service instance %s is ready", tasks[task])
                    elif isinstance(exc, WaitTimeoutError):
                        logger.warning("Service instance %s not ready: %s", tasks[task], exc)
                        not_ready.append(tasks[task])
                    elif fatal is None:
                        fatal = exc
                if fatal is not None:
                    raise fatal
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        not_ready.extend(tasks[task] for task in pending)
        if not_ready:
            raise ReadinessTimeoutError(not_ready, self.startup_timeout)
