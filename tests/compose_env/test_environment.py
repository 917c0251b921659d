"""End-to-end orchestration tests against a mocked Docker client.

The compose tool is never run: ``_run_compose`` is replaced by a recorder
and the SDK client returns containers built by ``make_container``.
"""

from __future__ import annotations

import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from src.compose_env import wait
from src.compose_env.compose_invoker import (
    ContainerisedComposeInvoker,
    LocalComposeInvoker,
    RemoveImages,
)
from src.compose_env.environment import ComposeEnvironment, docker_host_address
from src.shared.config import ComposeEnvSettings
from src.shared.errors import (
    ConfigurationError,
    ContainerExitedError,
    ExternalProcessError,
    ReadinessTimeoutError,
)
from tests.compose_env.fakes import PROJECT, make_ambassador, make_client, make_container


class ComposeRecorder:
    """Stands in for ``ComposeEnvironment._run_compose``."""

    def __init__(self, fail_on: str | None = None) -> None:
        self.commands: list[list[str]] = []
        self.fail_on = fail_on

    async def __call__(self, command: list[str]) -> tuple[int, str, str]:
        self.commands.append(command)
        if self.fail_on is not None and self.fail_on in command:
            raise ExternalProcessError(command, 1, "no such service")
        return 0, "", ""

    def subcommands(self) -> list[str]:
        return [next(arg for arg in cmd if arg in ("up", "down")) for cmd in self.commands]


def default_containers() -> list[MagicMock]:
    return [
        make_container("web", listening=(8080,)),
        make_container("db", 1, listening=(5432,)),
        make_container("db", 2, listening=(5432,)),
    ]


def make_env(
    compose_file: Path,
    settings: ComposeEnvSettings,
    containers: list[MagicMock] | None = None,
    host_ports: dict[int, int] | None = None,
    fail_on: str | None = None,
) -> tuple[ComposeEnvironment, ComposeRecorder]:
    client = make_client(
        default_containers() if containers is None else containers,
        make_ambassador(host_ports or {2000: 49153}),
    )
    env = ComposeEnvironment(
        compose_file,
        project_name=PROJECT,
        settings=settings,
        docker_client=client,
        reaper=MagicMock(),
    )
    recorder = ComposeRecorder(fail_on)
    env._run_compose = recorder  # type: ignore[method-assign]
    return env, recorder


class TestStartup:
    @pytest.mark.asyncio
    async def test_web_and_scaled_db(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env, recorder = make_env(compose_file, settings)
        env.with_exposed_service("web", 8080).with_scaled_service("db", 2)

        await env.start()

        assert env.state == "running"
        up = recorder.commands[0]
        assert "up" in up and "-d" in up
        assert up[up.index("--scale") + 1] == "db=2"
        assert sorted(env.instances) == ["db_1", "db_2", "web_1"]
        assert env.get_service_port("web", 8080) == 49153
        assert env.get_service_host("web", 8080) == "localhost"
        with pytest.raises(ConfigurationError, match="with_exposed_service"):
            env.get_service_port("db", 5432)

        run_kwargs = env.client.containers.run.call_args.kwargs
        assert run_kwargs["links"] == {f"{PROJECT}-web-1": "web_1"}
        assert run_kwargs["network"] == f"{PROJECT}_default"
        env._reaper.register_labels_filter_for_cleanup.assert_called_once_with(
            {"com.docker.compose.project": PROJECT}
        )
        await env.stop()

    @pytest.mark.asyncio
    async def test_unknown_service_names_are_warned(
        self, compose_file: Path, settings: ComposeEnvSettings, caplog: pytest.LogCaptureFixture
    ) -> None:
        env, recorder = make_env(compose_file, settings)
        env.with_services("web", "wbe").with_scaled_service("cache", 0)

        await env.start()

        assert "Service 'wbe' is not defined" in caplog.text
        assert "Service 'cache' is not defined" in caplog.text
        assert "Service 'web'" not in caplog.text
        assert recorder.subcommands()[0] == "up"
        await env.stop()

    @pytest.mark.asyncio
    async def test_without_exposed_ports_no_ambassador(
        self, compose_file: Path, settings: ComposeEnvSettings
    ) -> None:
        env, _ = make_env(compose_file, settings)
        env.waiting_for("db", wait.for_listening_port(5432))
        await env.start()
        assert env.state == "running"
        env.client.containers.run.assert_not_called()
        await env.stop()

    @pytest.mark.asyncio
    async def test_two_instances_of_one_service(
        self, compose_file: Path, settings: ComposeEnvSettings
    ) -> None:
        env, _ = make_env(compose_file, settings, host_ports={2000: 50001, 2001: 50002})
        env.with_exposed_service("db", 5432).with_exposed_service("db", 5432, instance=2)
        await env.start()
        assert env.get_service_port("db", 5432) == 50001
        assert env.get_service_port("db_2", 5432) == 50002
        await env.stop()

    @pytest.mark.asyncio
    async def test_container_lookup(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env, _ = make_env(compose_file, settings)
        await env.start()
        assert env.get_container_by_service_name("db_2").name == f"{PROJECT}-db-2"
        assert env.get_container_by_service_name("web").instance_id == "web_1"
        assert env.get_container_by_service_name("cache") is None
        await env.stop()

    @pytest.mark.asyncio
    async def test_context_manager(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env, recorder = make_env(compose_file, settings)
        async with env.with_exposed_service("web", 8080):
            assert env.state == "running"
        assert env.state == "stopped"
        assert recorder.subcommands() == ["up", "down"]

    @pytest.mark.asyncio
    async def test_pull_uses_sdk(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env, _ = make_env(compose_file, settings)
        await env.with_pull().start()
        pulled = [c.args[0] for c in env.client.images.get.call_args_list]
        assert pulled == ["nginx:1.25", "postgres:16-alpine"]
        await env.stop()


class TestStartupFailures:
    @pytest.mark.asyncio
    async def test_misspelled_service_tears_down(
        self, compose_file: Path, settings: ComposeEnvSettings
    ) -> None:
        env, recorder = make_env(compose_file, settings)
        env.waiting_for("dbb", wait.for_log_message("ready"))

        with pytest.raises(ConfigurationError, match="dbb_1"):
            await env.start()

        assert env.state == "stopped"
        assert recorder.subcommands() == ["up", "down"]
        env._reaper.cleanup.assert_called_once_with({"com.docker.compose.project": PROJECT})
        assert env.instances == {}

    @pytest.mark.asyncio
    async def test_compose_up_failure(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env, recorder = make_env(compose_file, settings, fail_on="up")
        with pytest.raises(ExternalProcessError):
            await env.start()
        assert env.state == "stopped"
        assert recorder.subcommands() == ["up", "down"]
        env._reaper.cleanup.assert_called_once()

    @pytest.mark.asyncio
    async def test_readiness_timeout_names_instance(
        self, compose_file: Path, settings: ComposeEnvSettings
    ) -> None:
        env, recorder = make_env(compose_file, settings)
        env.with_startup_timeout(0.3).waiting_for("db_2", wait.for_log_message("never printed"))
        with pytest.raises(ReadinessTimeoutError) as exc_info:
            await env.start()
        assert exc_info.value.instances == ["db_2"]
        assert env.state == "stopped"
        assert recorder.subcommands() == ["up", "down"]

    @pytest.mark.asyncio
    async def test_startup_timeout_longer_than_strategy_default(
        self, compose_file: Path, settings: ComposeEnvSettings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr("src.compose_env.wait.base.DEFAULT_STARTUP_TIMEOUT", 0.1)
        env, _ = make_env(compose_file, settings)
        env.with_startup_timeout(0.4).waiting_for("db_2", wait.for_log_message("never printed"))
        started = time.monotonic()
        with pytest.raises(ReadinessTimeoutError):
            await env.start()
        assert time.monotonic() - started >= 0.4

    @pytest.mark.asyncio
    async def test_exited_container_fails_startup(
        self, compose_file: Path, settings: ComposeEnvSettings
    ) -> None:
        containers = [make_container("web", listening=(8080,)), make_container("db", status="exited")]
        env, _ = make_env(compose_file, settings, containers=containers)
        env.waiting_for("db", wait.for_log_message("ready"))
        with pytest.raises(ContainerExitedError):
            await env.start()
        assert env.state == "stopped"

    @pytest.mark.asyncio
    async def test_compose_down_failure_still_reaps(
        self, compose_file: Path, settings: ComposeEnvSettings
    ) -> None:
        env, _ = make_env(compose_file, settings, fail_on="down")
        await env.start()
        await env.stop()
        assert env.state == "stopped"
        env._reaper.cleanup.assert_called_once()


class TestLifecycleRules:
    @pytest.mark.asyncio
    async def test_declarations_after_start_fail(
        self, compose_file: Path, settings: ComposeEnvSettings
    ) -> None:
        env, _ = make_env(compose_file, settings)
        await env.start()
        with pytest.raises(ConfigurationError):
            env.with_exposed_service("web", 8080)
        with pytest.raises(ConfigurationError):
            env.with_build()
        with pytest.raises(ConfigurationError):
            await env.start()
        await env.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env, recorder = make_env(compose_file, settings)
        await env.stop()
        await env.start()
        await env.stop()
        await env.stop()
        assert recorder.subcommands() == ["up", "down"]

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env, recorder = make_env(compose_file, settings)
        env.with_exposed_service("web", 8080)
        await env.start()
        await env.stop()
        with pytest.raises(ConfigurationError):
            env.get_service_port("web", 8080)
        await env.start()
        assert env.get_service_port("web", 8080) == 49153
        await env.stop()
        assert recorder.subcommands() == ["up", "down", "up", "down"]

    def test_address_before_start(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env, _ = make_env(compose_file, settings)
        env.with_exposed_service("web", 8080)
        with pytest.raises(ConfigurationError, match="start it"):
            env.get_service_port("web", 8080)
        with pytest.raises(ConfigurationError, match="never exposed"):
            env.get_service_port("web", 9090)

    def test_negative_scale(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env, _ = make_env(compose_file, settings)
        with pytest.raises(ConfigurationError):
            env.with_scaled_service("db", -1)


class TestComposeCommands:
    @pytest.mark.asyncio
    async def test_teardown_options(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env, recorder = make_env(compose_file, settings)
        env.with_remove_volumes(False).with_remove_images(RemoveImages.LOCAL)
        env.with_options("--ansi", "never").with_build().with_services("web")
        await env.start()
        await env.stop()
        up, down = recorder.commands
        assert up[:2] == ["--ansi", "never"]
        assert "--build" in up and up[-1] == "web"
        assert "-v" not in down
        assert down[-2:] == ["--rmi", "local"]

    def test_invoker_selection(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env, _ = make_env(compose_file, settings)
        env.with_local_compose(False)
        assert isinstance(env._compose(), ContainerisedComposeInvoker)
        env.with_local_compose()
        assert isinstance(env._compose(), LocalComposeInvoker)

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env = ComposeEnvironment(
            compose_file, project_name=PROJECT, settings=settings, docker_client=make_client([])
        )
        env.with_local_compose().with_env("TAG", "1.0")
        with patch.object(LocalComposeInvoker, "invoke", return_value=(2, "", "boom")):
            with pytest.raises(ExternalProcessError) as exc_info:
                await env._run_compose(["up", "-d"])
        assert exc_info.value.returncode == 2
        assert "boom" in exc_info.value.stderr


class TestProjectName:
    def test_random_project_is_lowercase(self, compose_file: Path, settings: ComposeEnvSettings) -> None:
        env = ComposeEnvironment(compose_file, identifier="MyTests", settings=settings)
        assert env.project.startswith("mytests")
        assert env.project == env.project.lower()

    def test_missing_compose_file(self, settings: ComposeEnvSettings) -> None:
        with pytest.raises(ConfigurationError, match="No docker compose file"):
            ComposeEnvironment(settings=settings)


class TestDockerHostAddress:
    def test_override_wins(self) -> None:
        assert docker_host_address(MagicMock(), "example.test") == "example.test"

    def test_tcp_host(self) -> None:
        client = MagicMock()
        client.api.base_url = "https://10.1.2.3:2376"
        assert docker_host_address(client) == "10.1.2.3"

    def test_unix_socket(self) -> None:
        client = MagicMock()
        client.api.base_url = "http+docker://localunixsocket"
        assert docker_host_address(client) == "localhost"
