# pw_manager.py
from __future__ import annotations

import queue
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Dict, List, Optional, Union

from pw_errors import CommandTimeout, ConnectorError, DecodeError, ServerOperationFailed, error_from_name
from pw_events import LinkCommand, Notification, UnlinkCommand
from pw_graph import GraphSnapshot, ObjectGraph
from pw_lock import GuardedLock
from pw_logger import configure_logging, get_logger
from pw_notify import NotificationHub
from pw_props import decode_channel, decode_connection, decode_device
from pw_server import PwCliSession, ServerEvents, ServerSession
from pw_types import ObjectKind
from store_config import ConfigStore, ManagerSettings

logger = get_logger("pw_connector.manager")

Command = Union[LinkCommand, UnlinkCommand]

_DEFAULT = object()

_DECODERS = {
    ObjectKind.DEVICE: decode_device,
    ObjectKind.CHANNEL: decode_channel,
    ObjectKind.CONNECTION: decode_connection,
}


class PipeWireManager(ServerEvents):
    """
    Keeps the object graph in sync with the server on a dedicated event thread and
    turns link/unlink requests into blocking calls.

    Server notifications and caller commands share one inbox, so every graph
    mutation happens on the event thread. Callers only read the graph through
    `snapshot()`.
    """

    def __init__(self, server: Optional[ServerSession] = None, settings: Optional[ManagerSettings] = None) -> None:
        self.settings = settings or ManagerSettings()
        self.server = server if server is not None else PwCliSession(self.settings.pw_dump, self.settings.pw_cli)
        self.objects = ObjectGraph(pending_max_passes=self.settings.pending_max_passes)

        self._graph_lock = GuardedLock("object graph")
        self._command_lock = GuardedLock("command section")
        self._inbox: queue.Queue = queue.Queue()
        self._hub = NotificationHub(on_abandon=self._abandoned)

        self._thread: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()
        self._closing = False
        self._ready = threading.Event()
        self._startup_error: Optional[BaseException] = None

    @classmethod
    def from_config(cls, store: Optional[ConfigStore] = None, server: Optional[ServerSession] = None) -> "PipeWireManager":
        settings = (store or ConfigStore()).settings()
        configure_logging(settings.log_level)
        return cls(server, settings)

    # --- lifecycle ------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "PipeWireManager":
        if self.running:
            return self
        self._ready.clear()
        self._startup_error = None
        self._closing = False
        self._thread = threading.Thread(target=self._run, name="pw-connector-events", daemon=True)
        self._thread.start()
        self._ready.wait()
        if self._startup_error is not None:
            self._thread.join()
            self._thread = None
            raise ServerOperationFailed(f"Failed to open server session: {self._startup_error}") from self._startup_error
        return self

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """
        Stop the event thread. Commands still waiting for an outcome fail with
        ConnectorError("manager closed").
        """
        with self._state_lock:
            thread = self._thread
            if thread is None:
                return
            self._closing = True
        self._inbox.put(("stop",))
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Event thread did not stop within %s seconds", timeout)
            return
        self._thread = None

    def __enter__(self) -> "PipeWireManager":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- event thread -----------------------------------------------------------

    def _run(self) -> None:
        try:
            self.server.open(self)
        except Exception as e:
            self._startup_error = e
            self._ready.set()
            return
        self._ready.set()
        logger.debug("Event thread started")

        reason = "manager closed"
        try:
            while True:
                item = self._inbox.get()
                tag = item[0]
                if tag == "stop":
                    break
                if tag == "ended":
                    reason = f"server session ended: {item[1]}"
                    logger.error("Stopping, the %s", reason)
                    break
                try:
                    self._dispatch(tag, item[1:])
                except Exception:
                    logger.exception("Failed to handle %s event", tag)
        finally:
            self._shutdown(reason)
            self.server.close()
            logger.debug("Event thread stopped")

    def _shutdown(self, reason: str) -> None:
        with self._state_lock:
            self._closing = True
        # no command or sync is queued past this point; release sync callers, drop the rest
        dropped = 0
        while True:
            try:
                item = self._inbox.get_nowait()
            except queue.Empty:
                break
            if item[0] == "sync":
                item[1].set()
            elif item[0] != "stop":
                dropped += 1
        if dropped:
            logger.debug("Dropped %d queued event(s) on shutdown", dropped)
        failed = self._hub.fail_all(ConnectorError(reason))
        if failed:
            logger.warning("Failed %d waiting command(s): %s", failed, reason)

    def _dispatch(self, tag: str, args: tuple) -> None:
        if tag == "appeared":
            self._handle_appeared(*args)
        elif tag == "removed":
            self._handle_removed(*args)
        elif tag == "command":
            self._handle_command(*args)
        elif tag == "forget":
            with self._graph_lock:
                self.objects.forget_requested_between(*args)
        elif tag == "sync":
            args[0].set()
        else:
            logger.warning("Unhandled event: %s", tag)

    def _handle_appeared(self, object_id: int, kind: ObjectKind, props: Dict[str, str]) -> None:
        decoder = _DECODERS.get(kind)
        if decoder is None:
            logger.debug("Received non-handled object %d", object_id)
            self._hub.publish(Notification.none())
            return
        try:
            obj = decoder(object_id, props)
        except DecodeError as e:
            logger.error("Failed to decode %s %d: %s", kind.value, object_id, e)
            return

        notification = None
        with self._graph_lock:
            if kind is ObjectKind.DEVICE:
                self.objects.add_device(obj)
            elif kind is ObjectKind.CHANNEL:
                self.objects.add_channel(obj)
            elif self.objects.add_connection(obj):
                notification = Notification.established(obj.output_device, obj.input_device)
            self.objects.reconcile()

        if notification is not None:
            self._hub.publish(notification)

    def _handle_removed(self, object_id: int) -> None:
        notifications: List[Notification] = []
        with self._graph_lock:
            # connection and device ids never overlap, so connections are checked first
            if self.objects.find_connection(object_id) is not None:
                link = self.objects.remove_connection(object_id)
                notifications.append(Notification.removed(link.output_device, link.input_device))
            else:
                device, dropped = self.objects.remove_device(object_id)
                if device is not None:
                    notifications.extend(Notification.removed(c.output_device, c.input_device) for c in dropped)
                elif self.objects.remove_channel(object_id) is None:
                    logger.debug("Removed object %d is not tracked", object_id)

        for n in notifications:
            self._hub.publish(n)

    def _handle_command(self, command: Command) -> None:
        notification = command.handle(self._command_lock, self._graph_lock, self.objects, self.server)
        if notification is not None:
            self._hub.publish(notification)

    # --- ServerEvents, called from the server session -------------------------

    def object_appeared(self, object_id: int, kind: ObjectKind, props: Dict[str, str]) -> None:
        self._inbox.put(("appeared", object_id, kind, props))

    def object_removed(self, object_id: int) -> None:
        self._inbox.put(("removed", object_id))

    def session_ended(self, reason: str) -> None:
        self._inbox.put(("ended", reason))

    def _abandoned(self, key) -> None:
        # a caller gave up on this pair; its unconfirmed requests must not block later links
        source, target = key
        if source is not None and target is not None:
            self._inbox.put(("forget", source, target))

    # --- caller API -----------------------------------------------------------

    def _raise_event(self, command: Command) -> Future:
        with self._state_lock:
            if self._closing or not self.running:
                raise ConnectorError("The manager is not running")
            # register before submitting so the outcome cannot slip past
            future = self._hub.expect((command.source, command.target), (command.success, command.failure))
            self._inbox.put(("command", command))
        logger.debug("Event raised: %s", command)
        return future

    def submit_link(self, first_device_id: int, second_device_id: int) -> Future:
        return self._raise_event(LinkCommand(first_device_id, second_device_id))

    def submit_unlink(self, first_device_id: int, second_device_id: int) -> Future:
        return self._raise_event(UnlinkCommand(first_device_id, second_device_id))

    def link(self, first_device_id: int, second_device_id: int, timeout=_DEFAULT) -> None:
        """
        Link two devices; the first one should have output channels and the second
        one input channels. Blocks until the server reports the connection.
        """
        self.wait_for(self.submit_link(first_device_id, second_device_id), timeout)

    def unlink(self, first_device_id: int, second_device_id: int, timeout=_DEFAULT) -> None:
        """Remove every connection from the first device into the second one."""
        self.wait_for(self.submit_unlink(first_device_id, second_device_id), timeout)

    def wait_for(self, future: Future, timeout=_DEFAULT) -> Notification:
        if timeout is _DEFAULT:
            timeout = self.settings.command_timeout
        try:
            notification = future.result(timeout)
        except FutureTimeoutError:
            self._hub.discard(future)
            raise CommandTimeout(f"No outcome received within {timeout} seconds") from None

        logger.debug("(Connector) Received event: %s", notification)
        if notification.failed:
            raise error_from_name(notification.error or "", notification.reason or notification.kind.value)
        return notification

    def snapshot(self) -> GraphSnapshot:
        with self._graph_lock:
            return self.objects.snapshot()

    def subscribe(self) -> queue.Queue:
        return self._hub.subscribe()

    def unsubscribe(self, q: queue.Queue) -> None:
        self._hub.unsubscribe(q)

    def sync(self, timeout: Optional[float] = None) -> bool:
        """Wait until everything queued before this call has been handled."""
        done = threading.Event()
        with self._state_lock:
            if self._closing or not self.running:
                return False
            self._inbox.put(("sync", done))
        return done.wait(timeout)
