from __future__ import annotations

import queue
import threading
from typing import List

import pytest

from pw_errors import (
    CommandTimeout,
    ConnectorError,
    EndpointNotFound,
    LockPoisoned,
    NoInputChannel,
    SameEndpoint,
    ServerOperationFailed,
)
from pw_events import Notification, NotificationKind
from pw_manager import PipeWireManager
from pw_types import ObjectKind
from store_config import ManagerSettings


def _stereo_pair(server, source=1, target=2) -> None:
    server.add_device(source, "player", media_class="Stream/Output/Audio")
    server.add_channel(source * 10, source, "out", "FL")
    server.add_channel(source * 10 + 1, source, "out", "FR")
    server.add_device(target, "speakers", media_class="Audio/Sink")
    server.add_channel(target * 10, target, "in", "FL")
    server.add_channel(target * 10 + 1, target, "in", "FR")


def _drain(q: queue.Queue) -> List[Notification]:
    out = []
    while not q.empty():
        out.append(q.get_nowait())
    return out


def test_link_same_endpoint(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)

    with pytest.raises(SameEndpoint):
        manager.link(1, 1)
    assert fake_server.created == []


def test_link_missing_device(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)

    with pytest.raises(EndpointNotFound):
        manager.link(1, 404)


def test_link_single_channel_devices(manager, fake_server) -> None:
    fake_server.add_device(1, "mic")
    fake_server.add_channel(10, 1, "out", "FL")
    fake_server.add_device(2, "recorder")
    fake_server.add_channel(20, 2, "in", "FL")
    manager.sync(5)

    manager.link(1, 2)

    snap = manager.snapshot()
    assert [(c.output_channel, c.input_channel) for c in snap.connections] == [(10, 20)]


def test_link_stereo_exact_match(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)

    manager.link(1, 2)
    manager.sync(5)

    pairs = sorted((c.output_channel, c.input_channel) for c in manager.snapshot().connections)
    assert pairs == [(10, 20), (11, 21)]


def test_link_fallback_to_all_inputs(manager, fake_server) -> None:
    fake_server.add_device(1, "mono")
    fake_server.add_channel(10, 1, "out", "MONO")
    fake_server.add_device(2, "surround")
    for channel_id, role in ((20, "FL"), (21, "FR"), (22, "FC")):
        fake_server.add_channel(channel_id, 2, "in", role)
    manager.sync(5)

    manager.link(1, 2)
    manager.sync(5)

    pairs = sorted((c.output_channel, c.input_channel) for c in manager.snapshot().connections)
    assert pairs == [(10, 20), (10, 21), (10, 22)]


def test_link_precondition_failure(manager, fake_server) -> None:
    fake_server.add_device(1, "mic")
    fake_server.add_channel(10, 1, "out", "FL")
    fake_server.add_device(2, "other-mic")
    fake_server.add_channel(20, 2, "out", "FL")
    manager.sync(5)

    with pytest.raises(NoInputChannel):
        manager.link(1, 2)


def test_link_fails_when_server_rejects_everything(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)
    fake_server.fail_all_creates = True

    with pytest.raises(ServerOperationFailed):
        manager.link(1, 2)


def test_link_already_connected_returns_immediately(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)
    manager.link(1, 2)
    manager.sync(5)

    manager.link(1, 2)

    assert len(fake_server.created) == 2


def test_unlink_without_connection_succeeds(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)

    manager.unlink(1, 2)

    assert fake_server.destroyed == []


def test_unlink_removes_every_matching_connection(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    fake_server.add_link(500, 1, 10, 2, 20)
    fake_server.add_link(501, 1, 11, 2, 21)
    fake_server.add_link(502, 2, 20, 1, 10)
    manager.sync(5)

    manager.unlink(1, 2)

    assert sorted(fake_server.destroyed) == [500, 501]
    assert [c.id for c in manager.snapshot().connections] == [502]


def test_unlink_drops_local_record_when_destroy_fails(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    fake_server.add_link(500, 1, 10, 2, 20)
    manager.sync(5)
    fake_server.fail_destroy = True

    manager.unlink(1, 2)

    assert manager.snapshot().connections == ()


def test_device_removal_cascades_to_connections(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)
    manager.link(1, 2)
    manager.sync(5)
    q = manager.subscribe()

    fake_server.remove(1)
    manager.sync(5)

    snap = manager.snapshot()
    assert snap.device(1) is None
    assert snap.connections == ()
    removed = [n for n in _drain(q) if n.kind is NotificationKind.CONNECTION_REMOVED]
    assert removed and all(n.key == (1, 2) for n in removed)


def test_removed_id_resolves_connection_first(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    fake_server.add_link(500, 1, 10, 2, 20)
    manager.sync(5)

    fake_server.remove(500)
    manager.sync(5)

    snap = manager.snapshot()
    assert snap.connections == ()
    assert snap.device(1) is not None and snap.device(2) is not None


def test_channel_before_device(manager, fake_server) -> None:
    fake_server.add_channel(10, 1, "out", "FL")
    manager.sync(5)
    assert [c.id for c in manager.snapshot().pending] == [10]

    fake_server.add_device(1, "late")
    manager.sync(5)

    snap = manager.snapshot()
    assert snap.pending == ()
    assert [c.id for c in snap.device(1).channels] == [10]


def test_undecodable_object_is_skipped(manager, fake_server) -> None:
    fake_server.events.object_appeared(7, ObjectKind.DEVICE, {"node.description": "no name"})
    fake_server.add_device(8, "fine")
    manager.sync(5)

    assert [d.id for d in manager.snapshot().devices] == [8]


def test_other_objects_publish_none(manager, fake_server) -> None:
    q = manager.subscribe()
    fake_server.events.object_appeared(3, ObjectKind.OTHER, {})
    manager.sync(5)

    assert _drain(q) == [Notification.none()]
    manager.unsubscribe(q)


def test_link_times_out_without_server_confirmation(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)
    fake_server.emit_links = False

    with pytest.raises(CommandTimeout):
        manager.link(1, 2, timeout=0.2)
    assert manager._hub.waiting == 0


def test_pending_command_can_be_cancelled(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)
    fake_server.emit_links = False

    future = manager.submit_link(1, 2)
    manager.sync(5)

    assert future.cancel()
    assert manager._hub.waiting == 0
    fake_server.add_link(500, 1, 10, 2, 20)
    manager.sync(5)
    assert future.cancelled()


def test_concurrent_links_on_disjoint_pairs(manager, fake_server) -> None:
    _stereo_pair(fake_server, 1, 2)
    _stereo_pair(fake_server, 3, 4)
    manager.sync(5)
    errors: List[BaseException] = []

    def run(a: int, b: int) -> None:
        try:
            manager.link(a, b)
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=run, args=pair) for pair in ((1, 2), (3, 4))]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert errors == []
    assert not any(t.is_alive() for t in threads)
    manager.sync(5)
    pairs = sorted({c.pair for c in manager.snapshot().connections})
    assert pairs == [(1, 2), (3, 4)]


def test_concurrent_links_on_same_pair_create_one_connection(manager, fake_server) -> None:
    fake_server.add_device(1, "mic")
    fake_server.add_channel(10, 1, "out", "FL")
    fake_server.add_device(2, "recorder")
    fake_server.add_channel(20, 2, "in", "FL")
    manager.sync(5)

    futures = [manager.submit_link(1, 2) for _ in range(4)]
    for f in futures:
        manager.wait_for(f)
    manager.sync(5)

    assert len(fake_server.created) == 1
    assert len(manager.snapshot().connections) == 1


def test_poisoned_lock_fails_later_commands(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)
    fake_server.create_error = KeyError("boom")

    with pytest.raises(ConnectorError):
        manager.link(1, 2)
    with pytest.raises(LockPoisoned):
        manager.unlink(1, 2)


def test_commands_need_a_running_manager(fake_server) -> None:
    mgr = PipeWireManager(fake_server, ManagerSettings())

    with pytest.raises(ConnectorError):
        mgr.link(1, 2)


def test_close_closes_server_session(fake_server) -> None:
    with PipeWireManager(fake_server, ManagerSettings()) as mgr:
        assert mgr.running

    assert not mgr.running
    assert fake_server.closed


def test_startup_failure_is_reported() -> None:
    class BrokenServer:
        def open(self, events):
            raise OSError("pw-dump not found")

        def close(self):
            pass

    with pytest.raises(ServerOperationFailed):
        PipeWireManager(BrokenServer(), ManagerSettings()).start()


def test_unlink_clears_unconfirmed_requests(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)
    fake_server.emit_links = False

    pending = manager.submit_link(1, 2)
    manager.sync(5)
    manager.unlink(1, 2)
    fake_server.emit_links = True
    manager.link(1, 2)

    assert len(fake_server.created) == 4
    assert pending.result(1) == Notification.established(1, 2)


def test_timed_out_link_can_be_retried(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)
    fake_server.emit_links = False

    with pytest.raises(CommandTimeout):
        manager.link(1, 2, timeout=0.2)
    fake_server.emit_links = True
    manager.link(1, 2, timeout=5.0)

    assert len(fake_server.created) == 4
    manager.sync(5)
    assert len(manager.snapshot().connections) == 2


def test_cancelled_link_can_be_retried(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)
    fake_server.emit_links = False

    future = manager.submit_link(1, 2)
    manager.sync(5)
    assert future.cancel()
    fake_server.emit_links = True
    manager.link(1, 2)

    assert len(fake_server.created) == 4


def test_close_fails_waiting_commands(fake_server) -> None:
    mgr = PipeWireManager(fake_server, ManagerSettings()).start()
    _stereo_pair(fake_server)
    mgr.sync(5)
    fake_server.emit_links = False

    future = mgr.submit_link(1, 2)
    mgr.sync(5)
    mgr.close()

    with pytest.raises(ConnectorError, match="manager closed"):
        future.result(1)
    assert not mgr.running
    assert mgr._hub.waiting == 0
    with pytest.raises(ConnectorError):
        mgr.submit_link(1, 2)
    assert mgr.sync(0.1) is False


def test_close_keeps_thread_that_did_not_stop(fake_server) -> None:
    mgr = PipeWireManager(fake_server, ManagerSettings()).start()
    _stereo_pair(fake_server)
    mgr.sync(5)
    fake_server.create_gate = threading.Event()

    future = mgr.submit_link(1, 2)
    mgr.close(timeout=0.1)

    assert mgr.running
    with pytest.raises(ConnectorError):
        mgr.submit_link(1, 2)

    fake_server.create_gate.set()
    mgr.close(timeout=5.0)

    assert not mgr.running
    assert fake_server.closed
    with pytest.raises(ConnectorError, match="manager closed"):
        future.result(1)


def test_server_session_end_stops_manager(manager, fake_server) -> None:
    _stereo_pair(fake_server)
    manager.sync(5)
    fake_server.emit_links = False
    future = manager.submit_link(1, 2)
    manager.sync(5)

    fake_server.events.session_ended("pw-dump exited with code 1")

    with pytest.raises(ConnectorError, match="exited with code 1"):
        future.result(5)
    manager._thread.join(5)
    assert not manager.running
    assert fake_server.closed
    with pytest.raises(ConnectorError):
        manager.link(1, 2)
