#!/usr/bin/env python3
"""
Selection Coordinator - lifecycle wiring for one workspace session

Owns the reconciler, notifier, router, emitter and error handler for a
single active workspace session:

    coordinator = SelectionCoordinator.from_config(SessionContext("ws-1"))
    coordinator.initialize()
    await coordinator.handle("selectObjects", {"vertexIds": ["v1"]})
    coordinator.selected_objects          # published view
    coordinator.teardown()
    await coordinator.aclose()            # also closes the HTTP client

Outbound events are observed through coordinator.emitter.
"""

import functools
import logging
from typing import Any, Callable, Dict, Optional, Union

from selection_system.core.action_router import ActionRouter
from selection_system.core.config import SelectionConfig
from selection_system.core.data_access import DataAccess
from selection_system.core.datashapes import Intent, Selection, SessionContext, Vertex
from selection_system.core.error_handler import ErrorHandler
from selection_system.core.event_emitter import EventEmitter, EventTier
from selection_system.core.formatters import build_shareable_url
from selection_system.core.related_items import RelatedItemsPopovers
from selection_system.core.selection_reconciler import SelectionReconciler
from selection_system.core.service_connector import ServiceConnector
from selection_system.core.side_effect_notifier import SideEffectNotifier

logger = logging.getLogger(__name__)


class SelectionCoordinator:
    """One selection state cell plus everything that reacts to it."""

    def __init__(
        self,
        data_access: DataAccess,
        session: SessionContext,
        config=SelectionConfig,
        emitter: Optional[EventEmitter] = None,
        error_handler: Optional[ErrorHandler] = None,
        console=None,
        popovers: Optional[RelatedItemsPopovers] = None,
        title_formatter: Optional[Callable[[Vertex], str]] = None,
        url_builder: Optional[Callable] = None
    ):
        self.config = config
        self.session = session
        self.data_access = data_access

        stream_tiers = {EventTier.CRITICAL, EventTier.SYSTEM}
        if config.STREAM_DEBUG_EVENTS:
            stream_tiers.add(EventTier.DEBUG)
        self.emitter = emitter or EventEmitter(stream_tiers=stream_tiers,
                                               buffer_max_size=config.EVENT_BUFFER_SIZE)
        self.error_handler = error_handler or ErrorHandler(console=console,
                                                           debug_mode=config.DEBUG,
                                                           log_file=config.LOG_FILE or None)

        self.reconciler = SelectionReconciler(data_access, discard_stale=config.DISCARD_STALE_RESOLUTIONS)
        self.notifier = SideEffectNotifier(
            self.emitter,
            session,
            url_builder=url_builder or functools.partial(build_shareable_url,
                                                         base_url=config.SHARE_BASE_URL),
            debug_mode=config.DEBUG,
            console=console
        )
        self.router = ActionRouter(
            self.reconciler,
            data_access,
            self.emitter,
            self.notifier,
            session,
            self.error_handler,
            title_formatter=title_formatter,
            popovers=popovers,
            suppress_duplicate_minutes=config.ERROR_SUPPRESS_MINUTES
        )
        self._active = False

    @classmethod
    def from_config(cls, session: SessionContext, config=SelectionConfig, **kwargs) -> "SelectionCoordinator":
        """Coordinator backed by the HTTP workspace service."""
        for issue in config.validate_config():
            logger.warning(f"Config issue: {issue}")
        connector = ServiceConnector(session, base_url=config.SERVICE_URL,
                                     timeout=config.REQUEST_TIMEOUT_SECONDS)
        return cls(connector, session, config=config, **kwargs)

    @property
    def active(self) -> bool:
        return self._active

    def initialize(self) -> None:
        """Start the session with an empty selection."""
        self.reconciler.reset()
        self.notifier.reset()
        self._active = True
        logger.info(f"Selection coordinator initialized for workspace {self.session.workspace_id}")

    def teardown(self) -> None:
        """End the session: selection back to empty, popovers closed."""
        self.reconciler.reset()
        self.notifier.reset()
        self.router.popovers.teardown_all()
        self._active = False
        logger.info(f"Selection coordinator torn down for workspace {self.session.workspace_id}")

    async def aclose(self) -> None:
        """Tear down, then release the data facade's connections."""
        if self._active:
            self.teardown()
        close = getattr(self.data_access, "close", None)
        if close is not None:
            await close()
        logger.debug(f"Data access closed for workspace {self.session.workspace_id}")

    async def handle(self, intent: Union[Intent, str], data: Any = None, trigger: Any = None) -> Any:
        """Entry point for inbound intents."""
        if not self._active:
            raise RuntimeError("SelectionCoordinator.handle() called before initialize()")
        return await self.router.dispatch(intent, data, trigger)

    @property
    def selected_objects(self) -> Dict[str, Any]:
        """Published public view: vertices, edges and their id indexes."""
        return self.notifier.selected_objects

    def current_selection(self) -> Selection:
        return self.reconciler.current_as_public_view()
