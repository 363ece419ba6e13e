"""ActuatorContext: wires config, executors, and the broker connection together."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from hostactuator.config import ActuatorConfig, load_config

if TYPE_CHECKING:
    from pathlib import Path

    from hostactuator.infra.broker.connection import BrokerConnection
    from hostactuator.infra.files import FileExecutor
    from hostactuator.infra.process_registry import ProcessRegistry
    from hostactuator.infra.shell import ShellExecutor
    from hostactuator.infra.webhook import WakeNotifier
    from hostactuator.services.dispatch import CommandRouter
    from hostactuator.services.session_controller import SessionController

logger = logging.getLogger(__name__)


class ActuatorContext:
    """Central wiring for the actuator's collaborators.

    Everything is built lazily on first access, so tests can pull out a
    single piece (say, the router) without opening a broker connection.
    The context owns the one process registry shared by the executor and
    the session controller.
    """

    def __init__(
        self, config: ActuatorConfig | None = None, config_path: Path | None = None
    ) -> None:
        self.config = config or load_config(config_path)
        self._registry: ProcessRegistry | None = None
        self._shell: ShellExecutor | None = None
        self._sessions: SessionController | None = None
        self._files: FileExecutor | None = None
        self._wake: WakeNotifier | None = None
        self._router: CommandRouter | None = None
        self._connection: BrokerConnection | None = None

    @property
    def root(self) -> str:
        return str(self.config.resolved_cwd)

    @property
    def registry(self) -> ProcessRegistry:
        if self._registry is None:
            from hostactuator.infra.process_registry import ProcessRegistry

            self._registry = ProcessRegistry(kill_grace=self.config.execution.kill_grace)
        return self._registry

    @property
    def shell(self) -> ShellExecutor:
        if self._shell is None:
            from hostactuator.infra.shell import ShellExecutor

            execution = self.config.execution
            self._shell = ShellExecutor(
                self.registry,
                self.root,
                default_timeout=execution.default_timeout,
                max_timeout=execution.max_timeout,
                kill_grace=execution.kill_grace,
            )
        return self._shell

    @property
    def sessions(self) -> SessionController:
        if self._sessions is None:
            from hostactuator.services.session_controller import SessionController

            self._sessions = SessionController(self.registry)
        return self._sessions

    @property
    def files(self) -> FileExecutor:
        if self._files is None:
            from hostactuator.infra.files import FileExecutor

            self._files = FileExecutor(self.root)
        return self._files

    @property
    def wake(self) -> WakeNotifier:
        if self._wake is None:
            from hostactuator.infra.webhook import WakeNotifier

            self._wake = WakeNotifier(
                self.config.webhook.port or None, timeout=self.config.webhook.timeout
            )
        return self._wake

    @property
    def router(self) -> CommandRouter:
        if self._router is None:
            from hostactuator.services.dispatch import CommandRouter

            self._router = CommandRouter(
                self.shell, self.sessions, self.files, brain_mode=self.config.brain_mode
            )
        return self._router

    @property
    def connection(self) -> BrokerConnection:
        if self._connection is None:
            from hostactuator.infra.backoff import ReconnectScheduler
            from hostactuator.infra.broker.connection import BrokerConnection

            reconnect = self.config.reconnect
            self._connection = BrokerConnection(
                self.config.broker.url,
                self.config.broker.token,
                self.config.resolved_actuator_id,
                self.router,
                wake=self.wake,
                backoff=ReconnectScheduler(
                    base_ms=reconnect.base_ms,
                    max_ms=reconnect.max_ms,
                    max_attempts=reconnect.attempt_limit,
                ),
            )
        return self._connection

    async def start(self) -> None:
        """Validate the broker settings and open the connection."""
        if not self.config.broker.url:
            raise ValueError("Broker URL is not configured (ACTUATOR_BROKER_URL)")
        if not self.config.broker.token:
            raise ValueError("Broker token is not configured (ACTUATOR_BROKER_TOKEN)")
        logger.info(
            "Starting actuator %s in %s (capabilities: %s%s)",
            self.config.resolved_actuator_id,
            self.root,
            ", ".join(self.config.capabilities),
            ", brain mode" if self.config.brain_mode else "",
        )
        await self.connection.start()

    async def close(self) -> None:
        """Stop the connection and release resources. Children are not awaited."""
        if self._connection is not None:
            await self._connection.stop()
        if self._registry is not None:
            self._registry.close()
        if self._wake is not None:
            await self._wake.close()
        logger.info("ActuatorContext closed")
