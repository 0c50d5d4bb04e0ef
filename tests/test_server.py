import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedOK

from reptrack.server import RepServer, is_command_message, json_safe

from .conftest import wait_for_subscriber


class FakeSocket:
    def __init__(self, incoming=(), closed=False):
        self.incoming = list(incoming)
        self.sent = []
        self.closed = closed

    async def send(self, data):
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for item in self.incoming:
            yield item
            await asyncio.sleep(0)


def make_server(tmp_path):
    server = RepServer(
        sessions_dir=str(tmp_path / "sessions"),
        export_dir=str(tmp_path / "exports"),
        thresholds_path=str(tmp_path / "calibration.json"),
    )
    server.controller.axis_timeout_ms = 200
    return server


def cmd(action, **kw):
    return {"type": "cmd", "action": action, **kw}


def gravity_frame(t):
    return {"type": "motion", "timestamp": t,
            "accelerationIncludingGravity": {"x": 0.1, "y": 0.3, "z": 9.7}}


def linear_frame(t, z):
    return {"type": "motion", "timestamp": t, "acceleration": {"x": 0.0, "y": 0.0, "z": z}}


def drain(queue):
    out = []
    while not queue.empty():
        out.append(queue.get_nowait())
    return out


def test_helpers():
    assert is_command_message({"type": "cmd"})
    assert is_command_message({"type": "command"})
    assert not is_command_message({"type": "motion"})
    assert json_safe({1: (1, 2), "a": object}) == {"1": [1, 2], "a": str(object)}


def test_start_is_refused_without_permission(tmp_path):
    async def run():
        server = make_server(tmp_path)
        status = await server.handle_message({"type": "hello", "motion_permission": "denied"})
        reply = await server.handle_message(cmd("start"))
        return server, status, reply

    server, status, reply = asyncio.run(run())
    assert status["type"] == "status"
    assert reply == {"type": "ack", "action": "start", "ok": False, "error": "permission_denied"}
    assert server.controller.mode.value == "IDLE"


def test_monitoring_session_streams_telemetry(tmp_path):
    async def run():
        server = make_server(tmp_path)
        task = asyncio.create_task(server.handle_message(cmd("start")))
        await wait_for_subscriber(server.bus)
        for i in range(5):
            await server.handle_message(gravity_frame(-500 + i * 40))
        ack = await task
        for i, z in enumerate([0.0, 0.2, 0.4]):
            await server.handle_message(linear_frame(i * 40, z))
        stop = await server.handle_message(cmd("stop"))
        again = await server.handle_message(cmd("stop"))
        return server, ack, stop, again

    server, ack, stop, again = asyncio.run(run())
    assert ack["ok"] is True
    assert ack["axis"] == "z"
    assert ack["calibrated"] is False
    telemetry = [m for m in drain(server._outbox) if m["type"] == "telemetry"]
    assert [m["timestamp"] for m in telemetry] == [0, 40, 80]
    assert all(m["axis"] == "z" for m in telemetry)
    assert stop["note"] is None
    assert again["note"] == "already_inactive"


def test_axis_detection_timeout_falls_back_to_default(tmp_path):
    async def run():
        server = make_server(tmp_path)
        return await server.handle_message(cmd("start"))

    ack = asyncio.run(run())
    assert ack["ok"] is True
    assert ack["axis"] == "y"


def test_set_rate(tmp_path):
    async def run():
        server = make_server(tmp_path)
        good = await server.handle_message(cmd("set_rate", hz=50))
        bad = await server.handle_message(cmd("set_rate", hz="fast"))
        return good, bad

    good, bad = asyncio.run(run())
    assert good["ok"] is True
    assert good["sample_rate_hz"] == 50
    assert good["interval_ms"] == pytest.approx(20.0)
    assert bad == {"type": "ack", "action": "set_rate", "ok": False, "error": "bad_hz"}


def test_unknown_action_and_ignored_frames(tmp_path):
    async def run():
        server = make_server(tmp_path)
        unknown = await server.handle_message(cmd("jump"))
        ignored = await server.handle_message({"type": "nonsense"})
        motion = await server.handle_message(linear_frame(0, 1.0))
        return unknown, ignored, motion

    unknown, ignored, motion = asyncio.run(run())
    assert unknown["ok"] is False
    assert unknown["error"] == "unknown_action"
    assert ignored is None
    assert motion is None


def test_thresholds_roundtrip_through_commands(tmp_path):
    async def run():
        server = make_server(tmp_path)
        before = await server.handle_message(cmd("get_thresholds"))
        cleared = await server.handle_message(cmd("clear_thresholds"))
        return before, cleared

    before, cleared = asyncio.run(run())
    assert before["thresholds"] is None
    assert before["calibration_date"] is None
    assert before["active"]["upwardAcceleration"] == pytest.approx(0.8)
    assert cleared["ok"] is True


def test_logging_and_export_commands(tmp_path):
    async def run():
        server = make_server(tmp_path)
        started = await server.handle_message(cmd("log_start"))
        stopped = await server.handle_message(cmd("log_stop"))
        listing = await server.handle_message(cmd("list_sessions"))
        exported = await server.handle_message(cmd("export", format="csv"))
        bad = await server.handle_message(cmd("export", format="xml"))
        return started, stopped, listing, exported, bad

    started, stopped, listing, exported, bad = asyncio.run(run())
    assert started["ok"] is True
    assert stopped["summary"]["session_id"] == started["session_id"]
    assert listing["count"] == 1
    assert exported["ok"] is True
    assert exported["filename"].endswith(".csv")
    assert (tmp_path / "exports" / exported["filename"]).exists()
    assert bad == {"type": "export_result", "ok": False, "error": "bad_format"}


def test_broadcast_drops_closed_clients(tmp_path):
    async def run():
        server = make_server(tmp_path)
        alive, dead = FakeSocket(), FakeSocket(closed=True)
        server.clients.update({alive, dead})
        await server.broadcast({"type": "telemetry", "rep_count": 1})
        return server, alive, dead

    server, alive, dead = asyncio.run(run())
    assert alive.sent == [{"type": "telemetry", "rep_count": 1}]
    assert server.clients == {alive}


def test_handle_client_replies_and_skips_bad_frames(tmp_path):
    ws = FakeSocket([
        "not json",
        "[1, 2]",
        json.dumps({"type": "hello", "motion_permission": "granted"}),
        json.dumps(cmd("get_thresholds")),
    ])

    async def run():
        server = make_server(tmp_path)
        await server.handle_client(ws)
        return server

    server = asyncio.run(run())
    assert [m["type"] for m in ws.sent] == ["status", "status", "thresholds"]
    assert server.clients == set()
    assert server.motion_permission is True


def test_stop_while_start_is_pending_is_acknowledged(tmp_path):
    async def run():
        server = make_server(tmp_path)
        task = asyncio.create_task(server.handle_message(cmd("start")))
        await wait_for_subscriber(server.bus)
        status = server.status()
        stop = await server.handle_message(cmd("stop"))
        for i in range(5):
            await server.handle_message(gravity_frame(i * 40))
        return server, status, stop, await task

    server, status, stop, start = asyncio.run(run())
    assert status["starting"] is True
    assert stop["note"] is None
    assert start == {"type": "ack", "action": "start", "ok": False, "error": "cancelled"}
    assert server.controller.mode.value == "IDLE"
    assert server.bus.subscriber_count == 0


def test_disconnect_cancels_pending_start(tmp_path):
    ws = FakeSocket([json.dumps(cmd("start"))])

    async def run():
        server = make_server(tmp_path)
        await server.handle_client(ws)
        await asyncio.gather(*list(server._tasks), return_exceptions=True)
        await asyncio.sleep(0)
        return server

    server = asyncio.run(run())
    assert server._tasks == set()
    assert server.bus.subscriber_count == 0
    assert server.controller.mode.value == "IDLE"
    assert not server.controller.starting
    assert [m["type"] for m in ws.sent] == ["status"]
