"""Tests for the environment lifecycle state machine."""

from __future__ import annotations

import pytest

from src.compose_env.ambassador import AmbassadorPortRegistry
from src.compose_env.service_instance import ServiceInstanceId
from src.compose_env.state_machine import (
    STATE_NAMES,
    TRANSITIONS,
    EnvironmentLifecycle,
    create_environment_machine,
)


def lifecycle(with_ports: bool = False) -> EnvironmentLifecycle:
    registry = AmbassadorPortRegistry()
    if with_ports:
        registry.register(ServiceInstanceId("web_1"), 8080)
    model = EnvironmentLifecycle("testproj", registry)
    create_environment_machine(model)
    return model


class TestDefinition:
    def test_states(self) -> None:
        assert STATE_NAMES == [
            "stopped",
            "starting",
            "discovering",
            "waiting_ready",
            "ambassador_starting",
            "running",
            "stopping",
        ]

    def test_every_transition_uses_known_states(self) -> None:
        for transition in TRANSITIONS:
            sources = transition["source"]
            sources = sources if isinstance(sources, list) else [sources]
            assert set(sources) <= set(STATE_NAMES)
            assert transition["dest"] in STATE_NAMES

    def test_initial_state(self) -> None:
        assert lifecycle().state == "stopped"


class TestTransitions:
    @pytest.mark.asyncio
    async def test_path_with_ambassador(self) -> None:
        model = lifecycle(with_ports=True)
        await model.begin_startup()
        await model.begin_discovery()
        await model.begin_waiting()
        assert await model.begin_ambassador()
        assert model.state == "ambassador_starting"
        await model.mark_running()
        assert model.state == "running"

    @pytest.mark.asyncio
    async def test_ambassador_skipped_without_ports(self) -> None:
        model = lifecycle()
        await model.begin_startup()
        await model.begin_discovery()
        await model.begin_waiting()
        assert not await model.begin_ambassador()
        assert model.state == "waiting_ready"
        await model.mark_running()
        assert model.state == "running"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("steps", [0, 1, 2, 3])
    async def test_teardown_from_any_startup_phase(self, steps: int) -> None:
        model = lifecycle()
        triggers = [model.begin_startup, model.begin_discovery, model.begin_waiting]
        for trigger in triggers[:steps]:
            await trigger()
        await model.begin_teardown()
        assert model.state == "stopping"
        await model.finish_teardown()
        assert model.state == "stopped"

    @pytest.mark.asyncio
    async def test_invalid_trigger_is_ignored(self) -> None:
        model = lifecycle()
        assert not await model.mark_running()
        assert model.state == "stopped"
