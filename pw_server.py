# pw_server.py
from __future__ import annotations

import threading
from typing import Dict, Optional

from pw_cli import pw_create_link, pw_destroy, pw_dump_monitor
from pw_dump import Appeared, MonitorDecoder, Removed
from pw_logger import get_logger
from pw_types import ObjectKind

logger = get_logger("pw_connector.server")


class ServerEvents:
    """Receiver of the server's object notifications."""

    def object_appeared(self, object_id: int, kind: ObjectKind, props: Dict[str, str]) -> None:
        raise NotImplementedError

    def object_removed(self, object_id: int) -> None:
        raise NotImplementedError

    def session_ended(self, reason: str) -> None:
        """The server stopped delivering notifications for a reason other than close()."""
        raise NotImplementedError


class ServerSession:
    """
    Connection to the media server. `open` starts delivering notifications to
    `events`; the create/destroy operations raise ServerOperationFailed when the
    server rejects them.
    """

    def open(self, events: ServerEvents) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def create_connection(self, output_device: int, output_channel: int, input_device: int, input_channel: int) -> Optional[int]:
        raise NotImplementedError

    def destroy_connection(self, connection_id: int) -> None:
        raise NotImplementedError


class PwCliSession(ServerSession):
    def __init__(self, pw_dump: str = "pw-dump", pw_cli: str = "pw-cli") -> None:
        self._pw_dump = pw_dump
        self._pw_cli = pw_cli
        self._proc = None
        self._reader: Optional[threading.Thread] = None
        self._closing = False

    def open(self, events: ServerEvents) -> None:
        self._closing = False
        self._proc = pw_dump_monitor(self._pw_dump)
        self._reader = threading.Thread(
            target=self._read_monitor, args=(self._proc, events), name="pw-dump-monitor", daemon=True
        )
        self._reader.start()
        logger.info("Monitoring PipeWire graph through %s", self._pw_dump)

    def _read_monitor(self, proc, events: ServerEvents) -> None:
        decoder = MonitorDecoder()
        for line in proc.stdout:
            for ev in decoder.feed(line):
                if isinstance(ev, Removed):
                    events.object_removed(ev.id)
                elif isinstance(ev, Appeared):
                    events.object_appeared(ev.id, ev.kind, ev.props)
        code = proc.wait()
        if self._closing:
            logger.debug("%s stopped", self._pw_dump)
            return
        logger.warning("%s exited with code %s", self._pw_dump, code)
        events.session_ended(f"{self._pw_dump} exited with code {code}")

    def close(self) -> None:
        self._closing = True
        if self._proc is not None:
            self._proc.terminate()
            self._proc.wait()
            self._proc = None
        if self._reader is not None:
            self._reader.join(timeout=1.0)
            self._reader = None

    def create_connection(self, output_device: int, output_channel: int, input_device: int, input_channel: int) -> Optional[int]:
        return pw_create_link(output_device, output_channel, input_device, input_channel, binary=self._pw_cli)

    def destroy_connection(self, connection_id: int) -> None:
        pw_destroy(connection_id, binary=self._pw_cli)
