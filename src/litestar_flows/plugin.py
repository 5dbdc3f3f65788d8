"""Litestar plugin for flow automation.

This module provides the FlowsPlugin for integrating the flow engine with
Litestar applications.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.exceptions import ImproperlyConfiguredException
from litestar.plugins import InitPluginProtocol

from litestar_flows.engine.engine import FlowEngine
from litestar_flows.engine.manager import FlowManager
from litestar_flows.engine.memory import memory_backend

if TYPE_CHECKING:
    from litestar.config.app import AppConfig

    from litestar_flows.config import EngineConfig
    from litestar_flows.core.protocols import MessageTransport

__all__ = ["FlowsPlugin", "FlowsPluginConfig"]


@dataclass
class FlowsPluginConfig:
    """Configuration for the FlowsPlugin.

    Attributes:
        engine: Optional pre-configured FlowEngine. If not provided, an engine on
            in-memory storage is created using ``transport``.
        manager: Optional pre-configured FlowManager. If not provided, one is created
            on the engine's flow store.
        transport: Message transport for the default engine.
        engine_config: Tunables for the default engine.
        dependency_key_engine: The key used for dependency injection of the
            FlowEngine. Defaults to "flow_engine".
        dependency_key_manager: The key used for dependency injection of the
            FlowManager. Defaults to "flow_manager".
        run_background: Whether to start the scheduler loop and worker pool on app
            startup and stop them on shutdown. Defaults to True.
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all flow API endpoints.
        api_guards: List of Litestar guards to apply to all flow API endpoints.
        api_tags: OpenAPI tags to apply to flow API endpoints.
        include_api_in_schema: Whether to include API endpoints in OpenAPI schema.
    """

    engine: FlowEngine | None = None
    manager: FlowManager | None = None
    transport: MessageTransport | None = None
    engine_config: EngineConfig | None = None
    dependency_key_engine: str = "flow_engine"
    dependency_key_manager: str = "flow_manager"
    run_background: bool = True
    enable_api: bool = True
    api_path_prefix: str = "/automation"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["Flows"])
    include_api_in_schema: bool = True


class FlowsPlugin(InitPluginProtocol):
    """Litestar plugin for flow automation.

    Provides dependency injection for the FlowEngine and FlowManager, runs the
    scheduler loop for the lifetime of the app and registers the REST API.

    Example:
        Basic usage with the database backend::

            from litestar import Litestar
            from litestar_flows import FlowEngine, FlowsPlugin, FlowsPluginConfig
            from litestar_flows.db import sqlalchemy_backend
            from litestar_flows.engine import CloudApiTransport

            engine = FlowEngine(
                sqlalchemy_backend(session_maker),
                transport=CloudApiTransport(access_token="...", phone_number_id="..."),
                use_worker_pool=True,
            )
            app = Litestar(plugins=[FlowsPlugin(config=FlowsPluginConfig(engine=engine))])

        Using in a route handler::

            @post("/inbox/{contact_id:uuid}/reply")
            async def on_reply(contact_id: UUID, data: Reply, flow_engine: FlowEngine) -> None:
                await flow_engine.handle_event(
                    MessageReceived(organization_id=data.org, contact_id=contact_id, text=data.text)
                )
    """

    __slots__ = ("_config", "_engine", "_manager")

    def __init__(self, config: FlowsPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or FlowsPluginConfig()
        self._engine: FlowEngine | None = None
        self._manager: FlowManager | None = None

    @property
    def engine(self) -> FlowEngine:
        """Get the flow engine.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._engine is None:
            msg = "FlowsPlugin has not been initialized. Access engine after app startup."
            raise RuntimeError(msg)
        return self._engine

    @property
    def manager(self) -> FlowManager:
        """Get the flow manager.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._manager is None:
            msg = "FlowsPlugin has not been initialized. Access manager after app startup."
            raise RuntimeError(msg)
        return self._manager

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Creates or uses the provided FlowEngine and FlowManager
        2. Adds dependency providers to the app config
        3. Optionally starts and stops the engine's background tasks with the app
        4. Optionally registers REST API controllers if enable_api=True

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.

        Raises:
            ImproperlyConfiguredException: If neither an engine nor a transport is configured.
        """
        engine = self._config.engine
        if engine is None:
            if self._config.transport is None:
                msg = "FlowsPluginConfig needs either an engine or a transport"
                raise ImproperlyConfiguredException(msg)
            engine = FlowEngine(memory_backend(), self._config.transport, config=self._config.engine_config)
        self._engine = engine
        self._manager = self._config.manager or FlowManager(engine.flows)

        # Create dependency providers
        def provide_engine() -> FlowEngine:
            return self._engine  # type: ignore[return-value]

        def provide_manager() -> FlowManager:
            return self._manager  # type: ignore[return-value]

        app_config.dependencies[self._config.dependency_key_engine] = Provide(
            provide_engine,
            sync_to_thread=False,
        )
        app_config.dependencies[self._config.dependency_key_manager] = Provide(
            provide_manager,
            sync_to_thread=False,
        )

        if self._config.run_background:
            app_config.on_startup.append(engine.start)
            app_config.on_shutdown.append(engine.stop)

        # Register REST API controllers if enabled
        if self._config.enable_api:
            from litestar import Router

            from litestar_flows.web.controllers import EventController, ExecutionController, FlowController
            from litestar_flows.web.exceptions import EXCEPTION_HANDLERS

            flows_router = Router(
                path=self._config.api_path_prefix,
                route_handlers=[FlowController, ExecutionController, EventController],
                guards=self._config.api_guards,
                tags=self._config.api_tags,
                include_in_schema=self._config.include_api_in_schema,
            )
            app_config.route_handlers.append(flows_router)
            app_config.exception_handlers.update(EXCEPTION_HANDLERS)  # type: ignore[arg-type]

        return app_config
