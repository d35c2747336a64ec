# pw_graph.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from pw_channels import ChannelDirection, canonical_channel_order
from pw_logger import get_logger
from pw_types import EXISTING, IN_FLIGHT, Channel, Connection, Device

logger = get_logger("pw_connector.graph")


@dataclass(frozen=True)
class DeviceView:
    id: int
    name: str
    description: Optional[str]
    nick: Optional[str]
    media_class: str
    classes: FrozenSet[str]
    channels: Tuple[Channel, ...]

    def select_channels(self, direction: ChannelDirection) -> List[Channel]:
        ps = [c for c in self.channels if c.direction is direction]
        order = {role: i for i, role in enumerate(canonical_channel_order())}
        return sorted(ps, key=lambda c: (order[c.role], c.id))


@dataclass(frozen=True)
class GraphSnapshot:
    devices: Tuple[DeviceView, ...]
    connections: Tuple[Connection, ...]
    pending: Tuple[Channel, ...]

    def device(self, device_id: int) -> Optional[DeviceView]:
        return next((d for d in self.devices if d.id == device_id), None)

    def device_by_name(self, name: str) -> Optional[DeviceView]:
        return next((d for d in self.devices if d.name == name), None)

    def connections_between(self, output_device: int, input_device: int) -> List[Connection]:
        return [c for c in self.connections if c.pair == (output_device, input_device)]


class ObjectGraph:
    def __init__(self, pending_max_passes: int = 0) -> None:
        self.devices: List[Device] = []
        self.connections: List[Connection] = []
        self.pending_max_passes = pending_max_passes
        self._pending: List[Channel] = []
        self._pending_passes: Dict[int, int] = {}
        self._requested: Set[Tuple[int, int]] = set()

    @property
    def pending_channels(self) -> Tuple[Channel, ...]:
        return tuple(self._pending)

    # --- mutation -------------------------------------------------------------

    def add_device(self, device: Device) -> Device:
        existing = self.find_device(device.id)
        if existing is not None:
            existing.update_from(device)
            logger.debug("Device %s(%d) was updated", existing.name, existing.id)
            return existing
        self.devices.append(device)
        logger.debug("Creating new device: %s(%d)", device.name, device.id)
        return device

    def add_channel(self, channel: Channel) -> None:
        self._pending = [c for c in self._pending if c.id != channel.id]
        self._pending.append(channel)
        self._pending_passes.setdefault(channel.id, 0)
        logger.debug("Creating new channel: %s(%d | D_ID: %d)", channel.name, channel.id, channel.device_id)

    def add_connection(self, connection: Connection) -> bool:
        self._requested.discard(connection.channel_pair)
        if self.find_connection(connection.id) is not None:
            return False
        self.connections.append(connection)
        logger.debug("Creating new connection: %d", connection.id)
        return True

    def reconcile(self) -> int:
        if not self.devices or not self._pending:
            return 0

        logger.debug("Devices quantity: %d", len(self.devices))
        logger.debug("Channels that need to be added: %d", len(self._pending))
        by_id: Dict[int, Device] = {d.id: d for d in self.devices}

        attached = 0
        updated: Set[int] = set()
        not_found: List[Channel] = []
        pending, self._pending = self._pending, []
        for channel in pending:
            device = by_id.get(channel.device_id)
            if device is None:
                not_found.append(channel)
                continue
            self._pending_passes.pop(channel.id, None)
            if device.has_channel(channel):
                continue
            logger.debug("Adding channel %d to device %d", channel.id, device.id)
            device.add_channel(channel)
            updated.add(device.id)
            attached += 1

        self._pending = self._age_pending(not_found)

        for device_id in sorted(updated):
            d = by_id[device_id]
            logger.debug("Device %s(%d) was updated | Channels: %s", d.name, d.id, d.channel_names())
        return attached

    def _age_pending(self, channels: List[Channel]) -> List[Channel]:
        keep: List[Channel] = []
        for c in channels:
            passes = self._pending_passes.get(c.id, 0) + 1
            if self.pending_max_passes and passes > self.pending_max_passes:
                logger.warning("Channel %d has no device %d after %d passes, dropping it", c.id, c.device_id, passes - 1)
                self._pending_passes.pop(c.id, None)
                continue
            self._pending_passes[c.id] = passes
            if passes == 1:
                logger.debug("Channel %d has no device %d yet", c.id, c.device_id)
            keep.append(c)
        return keep

    def remove_connection(self, connection_id: int, server=None) -> Optional[Connection]:
        """
        Drop the connection from the graph, and ask the server to destroy it when a
        server is given. The local record goes away whatever the server answers.
        """
        connection = self.find_connection(connection_id)
        if connection is None:
            logger.error("Failed to find connection with id %d", connection_id)
            return None

        out_dev, in_dev = self.find_two_devices(connection.output_device, connection.input_device)
        if out_dev is not None and in_dev is not None:
            logger.debug("Removing the connection between device %s and device %s", out_dev.name, in_dev.name)
        if server is not None:
            connection.destroy(server)

        self.connections.remove(connection)
        logger.debug("Connection %d was removed", connection.id)
        return connection

    def remove_device(self, device_id: int) -> Tuple[Optional[Device], List[Connection]]:
        device = self.find_device(device_id)
        if device is None:
            return None, []

        dropped = [c for c in self.connections if c.references(device_id)]
        for c in dropped:
            self.connections.remove(c)
            logger.debug("Connection %d was removed with device %d", c.id, device_id)

        owned = {c.id for c in device.channels}
        self._requested = {p for p in self._requested if p[0] not in owned and p[1] not in owned}
        self.devices.remove(device)
        logger.debug("Device %s(%d) was removed", device.name, device.id)
        return device, dropped

    def remove_channel(self, channel_id: int) -> Optional[Channel]:
        for c in self._pending:
            if c.id == channel_id:
                self._pending.remove(c)
                self._pending_passes.pop(channel_id, None)
                logger.debug("Pending channel %s(%d) was removed", c.name, c.id)
                return c
        for device in self.devices:
            c = device.remove_channel(channel_id)
            if c is not None:
                logger.debug("Channel %s(%d | D_ID: %d) was removed", c.name, c.id, c.device_id)
                return c
        return None

    # --- link tracking ----------------------------------------------------------

    def link_status(self, output_channel: int, input_channel: int) -> Optional[str]:
        pair = (output_channel, input_channel)
        if any(c.channel_pair == pair for c in self.connections):
            return EXISTING
        if pair in self._requested:
            return IN_FLIGHT
        return None

    def mark_requested(self, output_channel: int, input_channel: int) -> None:
        self._requested.add((output_channel, input_channel))

    def forget_requested_between(self, output_device: int, input_device: int) -> int:
        """Drop unconfirmed requests from the first device's channels into the second's."""
        source, target = self.find_two_devices(output_device, input_device)
        outs = {c.id for c in source.channels} if source is not None else set()
        ins = {c.id for c in target.channels} if target is not None else set()
        stale = {p for p in self._requested if p[0] in outs and p[1] in ins}
        self._requested -= stale
        if stale:
            logger.debug("Forgot %d unconfirmed link request(s) from %d to %d", len(stale), output_device, input_device)
        return len(stale)

    # --- lookups ----------------------------------------------------------------

    def find_device(self, device_id: int) -> Optional[Device]:
        return next((d for d in self.devices if d.id == device_id), None)

    def find_two_devices(self, first_id: int, second_id: int) -> Tuple[Optional[Device], Optional[Device]]:
        return self.find_device(first_id), self.find_device(second_id)

    def find_connection(self, connection_id: int) -> Optional[Connection]:
        return next((c for c in self.connections if c.id == connection_id), None)

    def find_connections_between(self, output_device: int, input_device: int) -> List[Connection]:
        return [c for c in self.connections if c.pair == (output_device, input_device)]

    def find_channel(self, channel_id: int) -> Optional[Channel]:
        for d in self.devices:
            c = d.get_channel(channel_id)
            if c is not None:
                return c
        return next((c for c in self._pending if c.id == channel_id), None)

    def snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(
            devices=tuple(
                DeviceView(
                    id=d.id,
                    name=d.name,
                    description=d.description,
                    nick=d.nick,
                    media_class=d.media_class,
                    classes=d.classes,
                    channels=tuple(d.channels),
                )
                for d in self.devices
            ),
            connections=tuple(self.connections),
            pending=tuple(self._pending),
        )
