# pw_events.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional, Tuple

from pw_errors import ConnectorError, EndpointNotFound, SameEndpoint, ServerOperationFailed
from pw_graph import ObjectGraph
from pw_lock import GuardedLock
from pw_logger import get_logger
from pw_types import LinkOutcome

logger = get_logger("pw_connector.events")


class NotificationKind(Enum):
    NONE = "none"
    CONNECTION_ESTABLISHED = "connection_established"
    CONNECTION_LINK_FAILED = "connection_link_failed"
    CONNECTION_REMOVED = "connection_removed"
    CONNECTION_UNLINK_FAILED = "connection_unlink_failed"


@dataclass(frozen=True)
class Notification:
    """Events that are received by the caller side."""

    kind: NotificationKind
    output: Optional[int] = None
    input: Optional[int] = None
    error: Optional[str] = None
    reason: Optional[str] = None

    @property
    def key(self) -> Tuple[Optional[int], Optional[int]]:
        return (self.output, self.input)

    @property
    def failed(self) -> bool:
        return self.kind in (NotificationKind.CONNECTION_LINK_FAILED, NotificationKind.CONNECTION_UNLINK_FAILED)

    @classmethod
    def none(cls) -> "Notification":
        return cls(NotificationKind.NONE)

    @classmethod
    def established(cls, output: int, input: int) -> "Notification":
        return cls(NotificationKind.CONNECTION_ESTABLISHED, output, input)

    @classmethod
    def removed(cls, output: int, input: int) -> "Notification":
        return cls(NotificationKind.CONNECTION_REMOVED, output, input)

    @classmethod
    def link_failed(cls, output: int, input: int, exc: BaseException) -> "Notification":
        return cls(NotificationKind.CONNECTION_LINK_FAILED, output, input, type(exc).__name__, str(exc))

    @classmethod
    def unlink_failed(cls, output: int, input: int, exc: BaseException) -> "Notification":
        return cls(NotificationKind.CONNECTION_UNLINK_FAILED, output, input, type(exc).__name__, str(exc))


@dataclass(frozen=True)
class LinkCommand:
    """Events that are received by the event thread."""

    source: int
    target: int

    success: ClassVar[NotificationKind] = NotificationKind.CONNECTION_ESTABLISHED
    failure: ClassVar[NotificationKind] = NotificationKind.CONNECTION_LINK_FAILED

    def __str__(self) -> str:
        return f"LinkCommand({self.source}, {self.target})"

    def handle(self, command_lock: GuardedLock, graph_lock: GuardedLock, graph: ObjectGraph, server) -> Optional[Notification]:
        """
        Run the command and return the notification to publish, or None when the
        outcome will be reported by the server once the connection shows up.
        """
        try:
            with command_lock:
                logger.debug("Handling command: %s", self)
                outcome = self._link(graph_lock, graph, server)
        except ConnectorError as e:
            logger.error("Failed to link devices: %s", e)
            return Notification.link_failed(self.source, self.target, e)
        except Exception as e:
            logger.exception("Unexpected error while linking devices %d and %d", self.source, self.target)
            return Notification.link_failed(self.source, self.target, e)

        if outcome.requested or outcome.in_flight:
            return None
        return Notification.established(self.source, self.target)

    def _link(self, graph_lock: GuardedLock, graph: ObjectGraph, server) -> LinkOutcome:
        if self.source == self.target:
            raise SameEndpoint(f"Source and target ids are the same: {self.source}")

        with graph_lock:
            source, target = graph.find_two_devices(self.source, self.target)
            if source is None or target is None:
                raise EndpointNotFound(f"One or both devices not found for ids: {self.source} and {self.target}")

            outcome = source.link_device(server, target, tracker=graph)
            if not outcome.connected:
                raise ServerOperationFailed(f"Failed to link devices: no channel of {source.name} could be linked into {target.name}")

        logger.info(
            "Linked device %d to %d (%d requested, %d existing, %d pending, %d failed)",
            self.source, self.target, outcome.requested, outcome.existing, outcome.in_flight, outcome.failed,
        )
        return outcome


@dataclass(frozen=True)
class UnlinkCommand:
    source: int
    target: int

    success: ClassVar[NotificationKind] = NotificationKind.CONNECTION_REMOVED
    failure: ClassVar[NotificationKind] = NotificationKind.CONNECTION_UNLINK_FAILED

    def __str__(self) -> str:
        return f"UnlinkCommand({self.source}, {self.target})"

    def handle(self, command_lock: GuardedLock, graph_lock: GuardedLock, graph: ObjectGraph, server) -> Optional[Notification]:
        logger.info("Unlinking devices %d and %d", self.source, self.target)
        try:
            with command_lock:
                logger.debug("Handling command: %s", self)
                with graph_lock:
                    links = graph.find_connections_between(self.source, self.target)
                    for link in links:
                        logger.debug(
                            "Found connection with id %d while searching for source id %d and target id %d",
                            link.id, self.source, self.target,
                        )
                        graph.remove_connection(link.id, server)
                    graph.forget_requested_between(self.source, self.target)
        except ConnectorError as e:
            logger.error("Failed to unlink devices: %s", e)
            return Notification.unlink_failed(self.source, self.target, e)
        except Exception as e:
            logger.exception("Unexpected error while unlinking devices %d and %d", self.source, self.target)
            return Notification.unlink_failed(self.source, self.target, e)

        if not links:
            logger.info("No connection between %d and %d, nothing to unlink", self.source, self.target)
        return Notification.removed(self.source, self.target)
