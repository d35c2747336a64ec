# pw_dump.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Union

from pw_logger import get_logger
from pw_types import ObjectKind

logger = get_logger("pw_connector.dump")


@dataclass(frozen=True)
class Appeared:
    id: int
    kind: ObjectKind
    props: Dict[str, str]


@dataclass(frozen=True)
class Removed:
    id: int


DumpEvent = Union[Appeared, Removed]

_DIRECTIONS = {"input": "in", "output": "out", "in": "in", "out": "out"}

_LINK_INFO_KEYS = {
    "link.output.node": "output-node-id",
    "link.output.port": "output-port-id",
    "link.input.node": "input-node-id",
    "link.input.port": "input-port-id",
}


def props_from_obj(obj: Dict[str, Any]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for src in (obj.get("props") or {}, (obj.get("info") or {}).get("props") or {}):
        if not isinstance(src, dict):
            continue
        for k, v in src.items():
            out[str(k)] = "" if v is None else str(v)
    return out


def object_kind(type_name: str) -> ObjectKind:
    t = type_name or ""
    if t.endswith(":Node"):
        return ObjectKind.DEVICE
    if t.endswith(":Port"):
        return ObjectKind.CHANNEL
    if t.endswith(":Link"):
        return ObjectKind.CONNECTION
    return ObjectKind.OTHER


def event_from_obj(obj: Any) -> Optional[DumpEvent]:
    if not isinstance(obj, dict):
        return None
    try:
        oid = int(obj.get("id"))
    except (TypeError, ValueError):
        return None

    info = obj.get("info", {})
    if info is None and "metadata" not in obj:
        return Removed(oid)
    if not isinstance(info, dict):
        info = {}

    kind = object_kind(str(obj.get("type") or ""))
    pr = props_from_obj(obj)

    if kind is ObjectKind.CHANNEL and not pr.get("port.direction"):
        d = _DIRECTIONS.get(str(info.get("direction") or "").strip().lower())
        if d:
            pr["port.direction"] = d

    if kind is ObjectKind.CONNECTION:
        for key, info_key in _LINK_INFO_KEYS.items():
            if not pr.get(key) and info.get(info_key) is not None:
                pr[key] = str(info[info_key])

    return Appeared(oid, kind, pr)


def events_from_dump(data: List[Any]) -> List[DumpEvent]:
    out: List[DumpEvent] = []
    for obj in data:
        ev = event_from_obj(obj)
        if ev is not None:
            out.append(ev)
    return out


class MonitorDecoder:
    """
    Incremental decoder for `pw-dump --monitor`, which writes one JSON array per
    batch of changes. Text is fed as it arrives; complete batches come out as events.

    A batch ends at the bracket closing its opening `[`, found by scanning that
    skips string contents. A complete batch that is not valid JSON is logged and
    dropped, and decoding carries on with the next one.
    """

    def __init__(self) -> None:
        self._buf = ""
        self._pos = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False

    @property
    def buffered(self) -> int:
        return len(self._buf)

    def _scan(self) -> int:
        """Index just past the end of the batch at the start of the buffer, or -1."""
        buf = self._buf
        for i in range(self._pos, len(buf)):
            ch = buf[i]
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif ch == "\\":
                    self._escaped = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                self._in_string = True
            elif ch in "[{":
                self._depth += 1
            elif ch in "]}":
                self._depth -= 1
                if self._depth == 0:
                    self._pos = 0
                    return i + 1
        self._pos = len(buf)
        return -1

    def feed(self, text: str) -> Iterator[DumpEvent]:
        self._buf += text
        while True:
            if self._depth == 0:
                start = self._buf.find("[")
                if start < 0:
                    self._buf = ""
                    return
                self._buf = self._buf[start:]
                self._pos = 0
            end = self._scan()
            if end < 0:
                return
            batch, self._buf = self._buf[:end], self._buf[end:]
            try:
                data = json.loads(batch)
            except ValueError as e:
                logger.warning("Skipping malformed pw-dump batch (%d chars): %s", len(batch), e)
                continue
            if isinstance(data, list):
                yield from events_from_dump(data)
