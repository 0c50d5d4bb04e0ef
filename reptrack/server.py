"""
reptrack WebSocket server

Bridges a phone (or any device) streaming motion events to the
repetition pipeline, and streams telemetry back to every connected client.

Device -> server frames:
    {"type": "hello", "motion_permission": "granted"}
    {"type": "motion", "timestamp": 1712.0,
     "acceleration": {"x": .., "y": .., "z": ..},
     "accelerationIncludingGravity": {"x": .., "y": .., "z": ..}}
    {"type": "cmd", "action": "start" | "stop" | "calibrate" | ...}

Server -> client frames:
    {"type": "status" | "ack" | "telemetry" | "calibration_progress" |
             "calibration_complete" | "sessions_list" | "export_result" | "error", ...}

Usage:
    python ws_server.py
"""

import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional

import websockets

from . import config
from .events import MotionEventBus
from .models import MotionEvent
from .recorder import SessionRecorder, make_session_id
from .session import Mode, PermissionDenied, SessionCancelled, SessionController
from .thresholds import ThresholdStore

logger = logging.getLogger(__name__)


def is_command_message(msg: dict) -> bool:
    return msg.get("type") in ("cmd", "command")


def json_safe(x):
    if x is None or isinstance(x, (str, int, float, bool)):
        return x
    if isinstance(x, (list, tuple)):
        return [json_safe(v) for v in x]
    if isinstance(x, dict):
        return {str(k): json_safe(v) for k, v in x.items()}
    return str(x)


class RepServer:
    """Connection registry plus the session context it drives."""

    def __init__(
        self,
        sessions_dir: str = config.SESSIONS_DIR,
        export_dir: str = config.EXPORT_DIR,
        thresholds_path: str = config.THRESHOLDS_PATH,
    ):
        self.clients = set()
        self.bus = MotionEventBus()
        self.recorder = SessionRecorder(sessions_dir, max_sessions=config.MAX_SESSIONS)
        self.export_dir = export_dir
        self.motion_permission: Optional[bool] = None
        self.controller = SessionController(
            self.bus,
            store=ThresholdStore(thresholds_path),
            recorder=self.recorder,
            permission_gate=self._permission_gate,
        )
        self._outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self._tasks = set()
        self.controller.add_listener(self._outbox.put_nowait)

    async def _permission_gate(self) -> bool:
        # clients that never say otherwise are treated as granted
        return self.motion_permission is not False

    def status(self) -> Dict[str, Any]:
        last = self.controller.last_record
        return {
            "type": "status",
            "mode": self.controller.mode.value,
            "starting": self.controller.starting,
            "axis": self.controller.axis,
            "sample_rate_hz": self.controller.sample_rate_hz,
            "recording": self.recorder.active,
            "rep_count": last.rep_count if last else 0,
            "calibrated": self.controller.calibrated_thresholds is not None,
            "calibration_date": self.controller.calibration_date,
        }

    # =========================================================================
    # Broadcast
    # =========================================================================

    async def broadcast(self, msg: dict):
        if not self.clients:
            return
        data = json.dumps(json_safe(msg))
        dead = []
        for ws in list(self.clients):
            try:
                await ws.send(data)
            except websockets.exceptions.ConnectionClosed:
                dead.append(ws)
        for ws in dead:
            self.clients.discard(ws)

    async def pump_outbox(self):
        """Forward controller messages to clients in the order they were produced."""
        while True:
            msg = await self._outbox.get()
            await self.broadcast(msg)

    # =========================================================================
    # Commands
    # =========================================================================

    async def handle_command(self, msg: dict) -> Dict[str, Any]:
        action = msg.get("action")
        ctl = self.controller

        if action in ("start", "calibrate"):
            try:
                if action == "start":
                    axis = await ctl.start_monitoring()
                else:
                    axis = await ctl.start_calibration()
            except PermissionDenied:
                return {"type": "ack", "action": action, "ok": False, "error": "permission_denied"}
            except SessionCancelled:
                return {"type": "ack", "action": action, "ok": False, "error": "cancelled"}
            return {"type": "ack", "action": action, "ok": True, "axis": axis,
                    "calibrated": ctl.calibrated_thresholds is not None}

        if action == "stop":
            active = ctl.mode is not Mode.IDLE or ctl.starting
            ctl.stop()
            return {"type": "ack", "action": "stop", "ok": True,
                    "note": None if active else "already_inactive"}

        if action == "cancel_calibration":
            ctl.cancel_calibration()
            return {"type": "ack", "action": action, "ok": True}

        if action == "set_rate":
            try:
                hz = float(msg.get("hz"))
            except (TypeError, ValueError):
                return {"type": "ack", "action": action, "ok": False, "error": "bad_hz"}
            ctl.set_sample_rate(hz)
            return {"type": "ack", "action": action, "ok": True,
                    "sample_rate_hz": ctl.sample_rate_hz,
                    "interval_ms": round(ctl.sampling_interval_ms, 2)}

        if action == "log_start":
            calibration = None
            if ctl.calibrated_thresholds is not None:
                calibration = {"thresholds": ctl.calibrated_thresholds.to_dict(camel=True),
                               "date": ctl.calibration_date}
            sid = self.recorder.start(axis=ctl.axis, calibration=calibration)
            return {"type": "ack", "action": action, "ok": True, "session_id": sid}

        if action == "log_stop":
            summary = self.recorder.stop()
            return {"type": "ack", "action": action, "ok": True, "summary": summary}

        if action == "list_sessions":
            sessions = self.recorder.list_sessions()
            return {"type": "sessions_list", "count": len(sessions), "sessions": sessions}

        if action == "export":
            fmt = msg.get("format", "json")
            if fmt not in ("json", "csv"):
                return {"type": "export_result", "ok": False, "error": "bad_format"}
            os.makedirs(self.export_dir, exist_ok=True)
            filename = f"sessions-{make_session_id()}.{fmt}"
            path = os.path.join(self.export_dir, filename)
            if fmt == "json":
                self.recorder.export_json(path)
            else:
                self.recorder.export_csv(path)
            return {"type": "export_result", "ok": True, "path": path, "filename": filename}

        if action == "get_thresholds":
            th = ctl.calibrated_thresholds
            return {"type": "thresholds", "thresholds": th.to_dict(camel=True) if th else None,
                    "calibration_date": ctl.calibration_date,
                    "active": ctl.pipeline.detector.thresholds.to_dict(camel=True)}

        if action == "clear_thresholds":
            ctl.clear_calibration()
            return {"type": "ack", "action": action, "ok": True}

        return {"type": "ack", "action": action, "ok": False, "error": "unknown_action"}

    # =========================================================================
    # Client handler
    # =========================================================================

    async def handle_message(self, msg: dict) -> Optional[Dict[str, Any]]:
        kind = msg.get("type")
        if kind == "motion":
            try:
                event = MotionEvent.from_dict(msg)
            except (TypeError, ValueError):
                return None
            self.bus.publish(event)
            return None
        if kind == "hello":
            self.motion_permission = msg.get("motion_permission", "granted") == "granted"
            return self.status()
        if is_command_message(msg):
            return await self.handle_command(msg)
        return None

    async def handle_client(self, ws):
        pending = set()
        self.clients.add(ws)
        logger.info("Client connected")
        try:
            await ws.send(json.dumps(self.status()))
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    continue
                if not isinstance(msg, dict):
                    continue
                if is_command_message(msg) and msg.get("action") in ("start", "calibrate"):
                    # axis detection waits for motion frames from this same socket
                    task = asyncio.create_task(self._reply(ws, msg))
                    self._tasks.add(task)
                    pending.add(task)
                    task.add_done_callback(self._tasks.discard)
                    task.add_done_callback(pending.discard)
                    continue
                reply = await self.handle_message(msg)
                if reply is not None:
                    await ws.send(json.dumps(json_safe(reply)))
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.clients.discard(ws)
            # a start still waiting on this socket for motion frames goes with it
            for task in list(pending):
                task.cancel()
            logger.info("Client disconnected")

    async def _reply(self, ws, msg: dict):
        reply = await self.handle_message(msg)
        try:
            await ws.send(json.dumps(json_safe(reply)))
        except websockets.exceptions.ConnectionClosed:
            pass


# =============================================================================
# Main
# =============================================================================

async def main():
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    print("reptrack server")
    print(f"WebSocket: ws://{config.HOST}:{config.PORT}")
    print(f"Sample rate: {config.SAMPLE_RATE_HZ} Hz, FFT size: {config.FFT_SIZE}")

    app = RepServer()
    pump = asyncio.create_task(app.pump_outbox())
    server = await websockets.serve(
        app.handle_client, config.HOST, config.PORT,
        ping_interval=20,
        ping_timeout=20,
    )
    try:
        await server.wait_closed()
    finally:
        app.controller.stop()
        app.recorder.stop()
        pump.cancel()
