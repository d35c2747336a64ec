# pw_types.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from pw_channels import AudioChannel, ChannelDirection
from pw_errors import InvalidDirection, NoInputChannel, NoOutputChannel, ServerOperationFailed
from pw_logger import get_logger

logger = get_logger("pw_connector.types")

IN_FLIGHT = "in_flight"
EXISTING = "existing"


class ObjectKind(Enum):
    DEVICE = "device"
    CHANNEL = "channel"
    CONNECTION = "connection"
    OTHER = "other"


@dataclass(frozen=True)
class Channel:
    id: int
    name: str
    direction: ChannelDirection
    role: AudioChannel
    device_id: int
    alias: Optional[str] = None

    @property
    def is_output(self) -> bool:
        return self.direction is ChannelDirection.OUT

    @property
    def is_input(self) -> bool:
        return self.direction is ChannelDirection.IN

    def link_channel(self, server, target: "Channel") -> Optional[int]:
        """
        Connect this output channel into `target`, which has to be an input channel.
        Returns whatever id the server handed back, or None if it only acknowledged the request.
        """
        if not self.is_output:
            raise InvalidDirection(f"Channel {self.name} could not be linked into {target.name}: {self.name} is not an output channel")
        if not target.is_input:
            raise InvalidDirection(f"Channel {self.name} could not be linked into {target.name}: {target.name} is not an input channel")

        link_id = server.create_connection(self.device_id, self.id, target.device_id, target.id)
        logger.debug("Channel %s(%d) linked to channel %s(%d)", self.name, self.id, target.name, target.id)
        return link_id


@dataclass(frozen=True)
class Connection:
    id: int
    output_device: int
    output_channel: int
    input_device: int
    input_channel: int

    @property
    def pair(self) -> Tuple[int, int]:
        return (self.output_device, self.input_device)

    @property
    def channel_pair(self) -> Tuple[int, int]:
        return (self.output_channel, self.input_channel)

    def references(self, device_id: int) -> bool:
        return device_id in (self.output_device, self.input_device)

    def destroy(self, server) -> bool:
        try:
            server.destroy_connection(self.id)
        except ServerOperationFailed as e:
            logger.error("Failed to destroy connection %d: %s", self.id, e)
            return False
        logger.info("Successfully destroyed connection %d", self.id)
        return True


@dataclass
class LinkOutcome:
    requested: int = 0
    existing: int = 0
    in_flight: int = 0
    failed: int = 0

    @property
    def connected(self) -> int:
        return self.requested + self.existing + self.in_flight


@dataclass(eq=False)
class Device:
    id: int
    name: str
    description: Optional[str] = None
    nick: Optional[str] = None
    media_class: str = ""
    classes: FrozenSet[str] = frozenset()
    props: Dict[str, str] = field(default_factory=dict)
    channels: List[Channel] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.description or self.nick or self.name

    def channel_names(self) -> List[str]:
        return [c.name for c in self.channels]

    def get_channel(self, channel_id: int) -> Optional[Channel]:
        for c in self.channels:
            if c.id == channel_id:
                return c
        return None

    def has_channel_of_id(self, channel_id: int) -> bool:
        return self.get_channel(channel_id) is not None

    def has_channel(self, channel: Channel) -> bool:
        return self.has_channel_of_id(channel.id)

    def add_channel(self, channel: Channel) -> None:
        self.channels.append(channel)

    def remove_channel(self, channel_id: int) -> Optional[Channel]:
        c = self.get_channel(channel_id)
        if c is not None:
            self.channels.remove(c)
        return c

    def outputs(self) -> List[Channel]:
        return [c for c in self.channels if c.is_output]

    def inputs(self) -> List[Channel]:
        return [c for c in self.channels if c.is_input]

    def update_from(self, other: "Device") -> None:
        self.name = other.name
        self.description = other.description
        self.nick = other.nick
        self.media_class = other.media_class
        self.classes = other.classes
        self.props = dict(other.props)

    def _request(self, server, tracker, out_ch: Channel, in_ch: Channel, outcome: LinkOutcome) -> bool:
        status = tracker.link_status(out_ch.id, in_ch.id) if tracker is not None else None
        if status == EXISTING:
            outcome.existing += 1
            return True
        if status == IN_FLIGHT:
            outcome.in_flight += 1
            return True
        try:
            out_ch.link_channel(server, in_ch)
        except ServerOperationFailed as e:
            logger.warning("Failed to create link %s -> %s: %s", out_ch.name, in_ch.name, e)
            outcome.failed += 1
            return False
        if tracker is not None:
            tracker.mark_requested(out_ch.id, in_ch.id)
        outcome.requested += 1
        return True

    def link_device(self, server, target: "Device", tracker=None) -> LinkOutcome:
        logger.debug('Linking device "%s" to "%s"', self.name, target.name)

        if not self.outputs():
            logger.error('Device "%s" does not have any output channels', self.name)
            raise NoOutputChannel(f"Device {self.name} does not have a channel with direction out")

        target_inputs = target.inputs()
        if not target_inputs:
            logger.error('Device "%s" does not have any input channels | Available channels: %s', target.name, target.channel_names())
            raise NoInputChannel(f"Device {target.name} does not have a channel with direction in")

        outcome = LinkOutcome()
        matched = False

        # Equal channel counts: route role to role and skip the fallback.
        # Only the target's inputs are searched for the matching role, so this pass
        # never pairs two outputs and InvalidDirection cannot come from here.
        if len(self.channels) == len(target.channels):
            for ch in self.outputs():
                other = next((p for p in target_inputs if p.role is ch.role), None)
                if other is None:
                    continue
                if self._request(server, tracker, ch, other, outcome):
                    matched = True
        if matched:
            return outcome

        first = next(iter(self.outputs()), None)
        if first is None:
            logger.warning("No output channel found in device %s", self.name)
            raise NoOutputChannel(f"Device {self.name} does not have a channel with direction out")
        for other in target_inputs:
            self._request(server, tracker, first, other, outcome)
        return outcome
