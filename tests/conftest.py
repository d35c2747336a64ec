from __future__ import annotations

import itertools
import threading
from typing import Dict, List, Optional, Set, Tuple

import pytest

from pw_errors import ServerOperationFailed
from pw_manager import PipeWireManager
from pw_server import ServerEvents, ServerSession
from pw_types import ObjectKind
from store_config import ManagerSettings


class FakeServer(ServerSession):
    """In-memory media server that reports created links back as new objects."""

    def __init__(self) -> None:
        self.events: Optional[ServerEvents] = None
        self.created: List[Tuple[int, int, int, int]] = []
        self.destroyed: List[int] = []
        self.fail_create: Set[Tuple[int, int]] = set()
        self.fail_all_creates = False
        self.fail_destroy = False
        self.create_error: Optional[BaseException] = None
        self.emit_links = True
        self.create_gate: Optional[threading.Event] = None
        self.closed = False
        self._ids = itertools.count(1000)

    def open(self, events: ServerEvents) -> None:
        self.events = events

    def close(self) -> None:
        self.closed = True

    def create_connection(self, output_device: int, output_channel: int, input_device: int, input_channel: int) -> Optional[int]:
        if self.create_gate is not None:
            self.create_gate.wait(5)
        if self.create_error is not None:
            raise self.create_error
        if self.fail_all_creates or (output_channel, input_channel) in self.fail_create:
            raise ServerOperationFailed(f"link {output_channel} -> {input_channel} rejected")
        link_id = next(self._ids)
        self.created.append((output_device, output_channel, input_device, input_channel))
        if self.emit_links:
            self.add_link(link_id, output_device, output_channel, input_device, input_channel)
        return link_id

    def destroy_connection(self, connection_id: int) -> None:
        self.destroyed.append(connection_id)
        if self.fail_destroy:
            raise ServerOperationFailed(f"destroy {connection_id} rejected")

    # helpers feeding notifications, as the server would

    def add_device(self, object_id: int, name: str, **props: str) -> None:
        pr: Dict[str, str] = {"node.name": name}
        pr.update({k.replace("_", "."): v for k, v in props.items()})
        self.events.object_appeared(object_id, ObjectKind.DEVICE, pr)

    def add_channel(self, object_id: int, device_id: int, direction: str, role: str = "FL", name: Optional[str] = None) -> None:
        self.events.object_appeared(
            object_id,
            ObjectKind.CHANNEL,
            {
                "port.name": name or f"{direction}_{role}",
                "port.direction": direction,
                "audio.channel": role,
                "node.id": str(device_id),
            },
        )

    def add_link(self, object_id: int, output_device: int, output_channel: int, input_device: int, input_channel: int) -> None:
        self.events.object_appeared(
            object_id,
            ObjectKind.CONNECTION,
            {
                "link.output.node": str(output_device),
                "link.output.port": str(output_channel),
                "link.input.node": str(input_device),
                "link.input.port": str(input_channel),
            },
        )

    def remove(self, object_id: int) -> None:
        self.events.object_removed(object_id)


class RecordingServer:
    """Bare create/destroy recorder for driving entities without a manager."""

    def __init__(self) -> None:
        self.created: List[Tuple[int, int, int, int]] = []
        self.destroyed: List[int] = []
        self.fail_create: Set[Tuple[int, int]] = set()
        self.fail_destroy = False

    def create_connection(self, output_device: int, output_channel: int, input_device: int, input_channel: int) -> Optional[int]:
        if (output_channel, input_channel) in self.fail_create:
            raise ServerOperationFailed("rejected")
        self.created.append((output_device, output_channel, input_device, input_channel))
        return None

    def destroy_connection(self, connection_id: int) -> None:
        self.destroyed.append(connection_id)
        if self.fail_destroy:
            raise ServerOperationFailed("rejected")


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def recording_server() -> RecordingServer:
    return RecordingServer()


@pytest.fixture
def manager(fake_server: FakeServer):
    mgr = PipeWireManager(fake_server, ManagerSettings(command_timeout=5.0))
    mgr.start()
    yield mgr
    mgr.close()
