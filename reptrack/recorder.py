"""
Session logging and export.

While recording, each telemetry record is appended as one JSON line to
sessions/session_<id>/raw.jsonl. Stopping writes summary.json next to it.
Finished sessions can be listed and exported as JSON or CSV.
"""

import json
import logging
import os
import shutil
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

from .models import TelemetryRecord
from .thresholds import utc_now_iso

logger = logging.getLogger(__name__)

CSV_COLUMNS = ["timestamp", "x", "y", "z", "axis", "smoothed", "cadenceHz", "repCount", "phase", "quality"]


def make_session_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def _read_json(path: str):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return None


class SessionRecorder:
    """
    Usage:
        rec = SessionRecorder("sessions")
        rec.start(axis="y")
        rec.append(record)      # per telemetry record
        summary = rec.stop()
    """

    def __init__(self, sessions_dir: str, max_sessions: int = 10):
        self.sessions_dir = sessions_dir
        self.max_sessions = max(1, int(max_sessions))
        os.makedirs(self.sessions_dir, exist_ok=True)

        self.active = False
        self.session_id: Optional[str] = None
        self.session_dir: Optional[str] = None
        self.raw_path: Optional[str] = None
        self.f = None
        self._reset_stats()

    def _reset_stats(self):
        self.started_at: Optional[str] = None
        self.axis: Optional[str] = None
        self.calibration: Optional[Dict[str, Any]] = None
        self.length = 0
        self.total_reps = 0
        self.qualities: List[int] = []
        self.last_cadence_hz: Optional[float] = None
        self._last_rep_count: Optional[int] = None

    def start(self, axis: Optional[str] = None, calibration: Optional[Dict[str, Any]] = None) -> str:
        if self.active:
            self.stop()
        self._reset_stats()
        sid = make_session_id()
        sdir = os.path.join(self.sessions_dir, f"session_{sid}")
        os.makedirs(sdir, exist_ok=True)

        self.session_id = sid
        self.session_dir = sdir
        self.raw_path = os.path.join(sdir, "raw.jsonl")
        self.f = open(self.raw_path, "w", buffering=1, encoding="utf-8")
        self.started_at = utc_now_iso()
        self.axis = axis
        self.calibration = calibration
        self.active = True
        logger.info("Recording session %s", sid)
        return sid

    def append(self, record: TelemetryRecord):
        if not self.active or self.f is None:
            return
        try:
            self.f.write(json.dumps(record.to_dict()) + "\n")
        except (OSError, ValueError) as e:
            logger.error("Session log write failed: %s", e)
            return

        self.length += 1
        if record.cadence_hz is not None:
            self.last_cadence_hz = record.cadence_hz
        # reps counted before recording began, or before a pipeline reset, are not ours
        if self._last_rep_count is None or record.rep_count < self._last_rep_count:
            self._last_rep_count = record.rep_count
        new_reps = record.rep_count - self._last_rep_count
        if new_reps > 0:
            self.total_reps += new_reps
            if record.quality is not None:
                self.qualities.append(record.quality)
        self._last_rep_count = record.rep_count

    def stop(self) -> Optional[Dict[str, Any]]:
        if not self.active:
            return None
        if self.f is not None:
            try:
                self.f.close()
            except OSError as e:
                logger.error("Closing session log failed: %s", e)
        self.f = None
        self.active = False

        avg_quality = sum(self.qualities) / len(self.qualities) if self.qualities else None
        summary = {
            "session_id": self.session_id,
            "start_time": self.started_at,
            "end_time": utc_now_iso(),
            "length": self.length,
            "total_reps": self.total_reps,
            "avg_quality": None if avg_quality is None else round(avg_quality, 1),
            "last_cadence_rpm": None if self.last_cadence_hz is None else round(self.last_cadence_hz * 60.0, 1),
            "detected_axis": self.axis,
            "calibration": self.calibration,
        }
        summary_path = os.path.join(self.session_dir, "summary.json")
        tmp = summary_path + ".tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(summary, f, indent=2)
            os.replace(tmp, summary_path)
        except OSError as e:
            logger.error("Could not write session summary %s: %s", summary_path, e)
        else:
            logger.info("Session %s saved (%d samples)", self.session_id, self.length)

        self._prune()
        return summary

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def _session_dirs(self) -> List[str]:
        try:
            names = [n for n in os.listdir(self.sessions_dir) if n.startswith("session_")]
        except OSError:
            return []
        dirs = [os.path.join(self.sessions_dir, n) for n in names]
        return sorted((d for d in dirs if os.path.isdir(d)), reverse=True)

    def _prune(self):
        for sdir in self._session_dirs()[self.max_sessions:]:
            shutil.rmtree(sdir, ignore_errors=True)

    def list_sessions(self) -> List[Dict[str, Any]]:
        """Summaries of finished sessions, newest first."""
        rows = []
        for sdir in self._session_dirs():
            summary = _read_json(os.path.join(sdir, "summary.json"))
            if isinstance(summary, dict):
                rows.append(summary)
        return rows

    def read_records(self, session_id: str) -> List[Dict[str, Any]]:
        raw_path = os.path.join(self.sessions_dir, f"session_{session_id}", "raw.jsonl")
        records = []
        try:
            with open(raw_path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(json.loads(line))
                    except ValueError:
                        continue
        except OSError:
            return []
        return records

    def export_json(self, path: str) -> str:
        sessions = []
        for summary in self.list_sessions():
            entry = dict(summary)
            entry["data"] = self.read_records(summary["session_id"])
            sessions.append(entry)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(sessions, f, indent=2)
        return path

    def export_csv(self, path: str) -> str:
        rows = []
        for summary in self.list_sessions():
            rows.extend(self.read_records(summary["session_id"]))
        df = pd.DataFrame(rows)
        df = df.rename(columns={"cadence_hz": "cadenceHz", "rep_count": "repCount"})
        df = df.reindex(columns=CSV_COLUMNS)
        df.to_csv(path, index=False)
        return path
