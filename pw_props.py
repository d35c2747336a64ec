# pw_props.py
from __future__ import annotations

from typing import Dict, FrozenSet, Mapping, Optional

from pw_channels import ChannelDirection, channel_from_port_props
from pw_errors import DecodeError
from pw_types import Channel, Connection, Device

Props = Mapping[str, str]


def val(props: Props, key: str) -> str:
    v = props.get(key)
    if v is None:
        raise DecodeError(f"Expected key {key} does not exist.")
    return str(v)


def val_or(props: Props, key: str, default: str) -> str:
    v = props.get(key)
    return default if v is None else str(v)


def val_opt(props: Props, key: str) -> Optional[str]:
    v = props.get(key)
    return None if v is None else str(v)


def val_int(props: Props, key: str) -> int:
    raw = val(props, key)
    try:
        return int(raw)
    except ValueError as e:
        raise DecodeError(f"Key {key} is not an integer: {raw!r}") from e


def is_stream_node(props: Props) -> bool:
    mc = props.get("media.class") or ""
    return mc.startswith("Stream/") and mc.endswith("/Audio")


def is_source_node(props: Props) -> bool:
    return props.get("media.class") == "Audio/Source"


def is_sink_node(props: Props) -> bool:
    return props.get("media.class") == "Audio/Sink"


def is_monitor_node(props: Props) -> bool:
    return (props.get("node.name") or "").endswith(".monitor")


def is_internal_node(props: Props) -> bool:
    app = (props.get("application.name") or "").strip()
    return app in ("PipeWire", "WirePlumber", "PulseAudio")


def device_classes(props: Props) -> FrozenSet[str]:
    out = set()
    if is_stream_node(props):
        out.add("stream")
    if is_source_node(props):
        out.add("source")
    if is_sink_node(props):
        out.add("sink")
    if is_monitor_node(props):
        out.add("monitor")
    if is_internal_node(props):
        out.add("internal")
    return frozenset(out)


def decode_device(object_id: int, props: Props) -> Device:
    return Device(
        id=object_id,
        name=val(props, "node.name"),
        description=val_opt(props, "node.description"),
        nick=val_opt(props, "node.nick"),
        media_class=val_or(props, "media.class", ""),
        classes=device_classes(props),
        props={str(k): str(v) for k, v in props.items()},
    )


def decode_channel(object_id: int, props: Props) -> Channel:
    return Channel(
        id=object_id,
        name=val(props, "port.name"),
        direction=ChannelDirection.from_str(val(props, "port.direction")),
        role=channel_from_port_props(props),
        device_id=val_int(props, "node.id"),
        alias=val_opt(props, "port.alias"),
    )


def decode_connection(object_id: int, props: Props) -> Connection:
    return Connection(
        id=object_id,
        output_device=val_int(props, "link.output.node"),
        output_channel=val_int(props, "link.output.port"),
        input_device=val_int(props, "link.input.node"),
        input_channel=val_int(props, "link.input.port"),
    )


def encode_device(device: Device) -> Dict[str, str]:
    out = dict(device.props)
    out["node.name"] = device.name
    if device.description is not None:
        out["node.description"] = device.description
    if device.nick is not None:
        out["node.nick"] = device.nick
    if device.media_class:
        out["media.class"] = device.media_class
    return out


def encode_channel(channel: Channel) -> Dict[str, str]:
    out = {
        "port.name": channel.name,
        "port.direction": channel.direction.value,
        "audio.channel": channel.role.tag,
        "node.id": str(channel.device_id),
    }
    if channel.alias is not None:
        out["port.alias"] = channel.alias
    return out


def encode_connection(connection: Connection) -> Dict[str, str]:
    return {
        "link.output.node": str(connection.output_device),
        "link.output.port": str(connection.output_channel),
        "link.input.node": str(connection.input_device),
        "link.input.port": str(connection.input_channel),
    }
