"""
Message Bus

Routes commands to their single handler and events to every subscriber.
Apps register their handlers in ``AppConfig.ready()``.
"""

from typing import Any, Callable, Dict, List, Type
import logging

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class MessageBus:
    """
    Commands: one handler per command type.
    Events: any number of handlers per event type.
    """

    def __init__(self):
        self._event_handlers: Dict[Type[DomainEvent], List[Callable]] = {}
        self._command_handlers: Dict[Type, Callable] = {}

    def register_event_handler(self, event_type: Type[DomainEvent], handler: Callable[[DomainEvent], None]):
        handlers = self._event_handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def register_command_handler(self, command_type: Type, handler: Callable[[Any], Any]):
        existing = self._command_handlers.get(command_type)
        if existing is not None and existing is not handler:
            raise ValueError(f"Handler for {command_type.__name__} is already registered")
        self._command_handlers[command_type] = handler

    def handle_command(self, command: Any) -> Any:
        command_type = type(command)
        handler = self._command_handlers.get(command_type)
        if handler is None:
            raise ValueError(f"No handler registered for command {command_type.__name__}")

        logger.info("Handling command %s", command_type.__name__)
        return handler(command)

    def publish_events(self, events: List[DomainEvent]):
        """
        Failures in one subscriber are logged and do not stop the others;
        the state change behind the event is already committed.
        """
        for event in events:
            event_type = type(event)
            handlers = self._event_handlers.get(event_type, [])
            if not handlers:
                logger.debug("No handlers registered for %s", event_type.__name__)
                continue

            for handler in handlers:
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        "Event handler %s failed for %s (%s)",
                        getattr(handler, '__name__', repr(handler)), event_type.__name__, event.event_id,
                    )

    def clear(self):
        self._event_handlers.clear()
        self._command_handlers.clear()


message_bus = MessageBus()
