# pw_channels.py
from __future__ import annotations

from enum import Enum
from typing import Dict, List

from pw_errors import DecodeError
from pw_logger import get_logger

logger = get_logger("pw_connector.channels")

UNKNOWN_STR = "unknown"


class ChannelDirection(Enum):
    IN = "in"
    OUT = "out"

    @classmethod
    def from_str(cls, s: str) -> "ChannelDirection":
        d = (s or "").strip().lower()
        for member in cls:
            if member.value == d:
                return member
        raise DecodeError(f"A channel of direction {s!r} has been found.")


class AudioChannel(Enum):
    MONO = "MONO"
    FL = "FL"
    FR = "FR"
    FC = "FC"
    LFE = "LFE"
    SL = "SL"
    SR = "SR"
    RL = "RL"
    RR = "RR"
    TFL = "TFL"
    TFR = "TFR"
    UNKNOWN = UNKNOWN_STR

    @classmethod
    def from_tag(cls, tag: str) -> "AudioChannel":
        s = normalize_channel(tag)
        if not s or s == UNKNOWN_STR.upper():
            return cls.UNKNOWN
        try:
            return cls(s)
        except ValueError:
            logger.warning("An audio channel of type %s has been found, treating it as unknown", tag)
            return cls.UNKNOWN

    @property
    def tag(self) -> str:
        return self.value


def canonical_channel_order() -> List[AudioChannel]:
    return [
        AudioChannel.MONO,
        AudioChannel.FL, AudioChannel.FR,
        AudioChannel.FC, AudioChannel.LFE,
        AudioChannel.SL, AudioChannel.SR,
        AudioChannel.RL, AudioChannel.RR,
        AudioChannel.TFL, AudioChannel.TFR,
        AudioChannel.UNKNOWN,
    ]


_ALIASES = {
    "fl": "FL", "front-left": "FL",
    "fr": "FR", "front-right": "FR",
    "fc": "FC", "front-center": "FC",
    "lfe": "LFE", "low-frequency": "LFE",
    "rl": "RL", "rear-left": "RL",
    "rr": "RR", "rear-right": "RR",
    "sl": "SL", "side-left": "SL",
    "sr": "SR", "side-right": "SR",
    "tfl": "TFL", "top-front-left": "TFL",
    "tfr": "TFR", "top-front-right": "TFR",
    "mono": "MONO",
}


def normalize_channel(v: str) -> str:
    s = (v or "").strip().lower()
    if not s:
        return ""
    if s in _ALIASES:
        return _ALIASES[s]
    return s.upper()


def channel_from_port_props(props: Dict[str, str]) -> AudioChannel:
    v = (props.get("audio.channel") or "").strip()
    if v:
        return AudioChannel.from_tag(v)

    pn = (props.get("port.name") or "").strip()
    parts = pn.split("_")
    if len(parts) >= 2 and normalize_channel(parts[-1]) in _ALIASES.values():
        return AudioChannel(normalize_channel(parts[-1]))

    return AudioChannel.UNKNOWN
