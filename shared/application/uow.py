"""
Unit of Work

Wraps one database transaction. Domain events collected from aggregates
are handed to the message bus only after the outermost commit, so a
rolled-back transition never produces a notification.
"""

from abc import ABC, abstractmethod
from typing import List
import logging

from django.db import transaction

from shared.domain.base import Aggregate, DomainEvent

logger = logging.getLogger(__name__)


class AbstractUnitOfWork(ABC):

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    @abstractmethod
    def commit(self):
        pass

    @abstractmethod
    def rollback(self):
        pass

    @abstractmethod
    def collect_events(self, *aggregates: Aggregate):
        pass


class DjangoUnitOfWork(AbstractUnitOfWork):
    """
    ``transaction.atomic()`` plus deferred event publishing.

    Usage:
        with DjangoUnitOfWork() as uow:
            booking = booking_repo.get(booking_id, lock=True)
            booking.select(actor, now)
            booking_repo.save(booking)
            uow.collect_events(booking)
        # events are published once the transaction has committed

    Nesting is allowed: an inner unit becomes a savepoint and its events
    still wait for the outermost commit (``transaction.on_commit``).
    """

    def __init__(self, message_bus=None):
        self._events: List[DomainEvent] = []
        self._atomic = None
        self._message_bus = message_bus

    def __enter__(self):
        self._atomic = transaction.atomic()
        self._atomic.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            if self._atomic is not None:
                self._atomic.__exit__(exc_type, exc_val, exc_tb)
                self._atomic = None

    def commit(self):
        events = self._events.copy()
        self._events.clear()
        logger.debug("Unit of work committing with %d event(s)", len(events))
        if events:
            transaction.on_commit(lambda: self._publish_events(events))

    def rollback(self):
        if self._events:
            logger.warning("Rolling back unit of work, discarding %d event(s)", len(self._events))
        self._events.clear()

    def collect_events(self, *aggregates: Aggregate):
        for aggregate in aggregates:
            new_events = aggregate.events
            if not new_events:
                continue
            self._events.extend(new_events)
            aggregate.clear_events()
            logger.debug(
                "Collected %d event(s) from %s %s",
                len(new_events), aggregate.__class__.__name__, aggregate.id,
            )

    def _publish_events(self, events: List[DomainEvent]):
        bus = self._message_bus
        if bus is None:
            from shared.application.message_bus import message_bus as bus

        try:
            bus.publish_events(events)
        except Exception:
            # the transaction is already committed; nothing to roll back
            logger.exception("Publishing %d committed event(s) failed", len(events))
