"""
Replay a recorded accelerometer trace through the rep pipeline.

The trace is a CSV or JSONL file with timestamp (ms), x, y, z columns,
e.g. a raw.jsonl written by the server's session recorder.

Usage:
    python run_reps.py trace.csv
    python run_reps.py sessions/session_<id>/raw.jsonl --axis y --rate 30
    python run_reps.py trace.csv --thresholds calibration.json
"""

import argparse
import sys
from pathlib import Path

import pandas as pd

from reptrack import config
from reptrack.axis import dominant_axis
from reptrack.models import Sample
from reptrack.pipeline import MonitoringPipeline, SampleRateLimiter
from reptrack.thresholds import ThresholdStore


def load_trace(path: Path) -> pd.DataFrame:
    if path.suffix in (".jsonl", ".ndjson"):
        df = pd.read_json(path, lines=True)
    else:
        df = pd.read_csv(path)
    missing = [c for c in ("timestamp", "x", "y", "z") if c not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing columns: {', '.join(missing)}")
    return df.dropna(subset=["timestamp"]).sort_values("timestamp").reset_index(drop=True)


def guess_axis(df: pd.DataFrame, n: int = config.AXIS_SAMPLES) -> str:
    head = df[["x", "y", "z"]].dropna().head(n).abs().sum()
    return dominant_axis(head.to_dict())


def main():
    parser = argparse.ArgumentParser(description="Replay a trace through the rep pipeline")
    parser.add_argument("trace", type=Path, help="CSV or JSONL file with timestamp,x,y,z")
    parser.add_argument("--axis", choices=["x", "y", "z"], help="Tracked axis (default: auto)")
    parser.add_argument("--rate", type=float, default=config.SAMPLE_RATE_HZ, help="Sampling rate in Hz")
    parser.add_argument("--thresholds", type=Path, help="Calibration file written by the server")
    args = parser.parse_args()

    try:
        df = load_trace(args.trace)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    axis = args.axis or guess_axis(df)
    pipeline = MonitoringPipeline(sample_rate_hz=args.rate)
    limiter = SampleRateLimiter(config.sampling_interval_ms(args.rate))

    if args.thresholds:
        loaded = ThresholdStore(str(args.thresholds)).load()
        if loaded is None:
            print(f"Warning: could not load thresholds from {args.thresholds}, using defaults")
        else:
            pipeline.detector.set_thresholds(loaded[0])

    print(f"\n--- REP REPLAY: {args.trace.name} ---")
    print(f"axis={axis}  rate={args.rate:.0f} Hz  samples={len(df)}\n")

    last_reps = 0
    record = None
    for row in df.itertuples(index=False):
        value = getattr(row, axis)
        if pd.isna(value):
            continue
        ts = int(row.timestamp)
        if not limiter.accept(ts):
            continue
        sample = Sample(
            x=0.0 if pd.isna(row.x) else float(row.x),
            y=0.0 if pd.isna(row.y) else float(row.y),
            z=0.0 if pd.isna(row.z) else float(row.z),
            timestamp=ts,
        )
        record = pipeline.process(sample, axis)
        if record.rep_count > last_reps:
            rpm = record.cadence_rpm
            print(f"rep={record.rep_count:3d}  t={ts:8d}  quality={record.quality:3d}%  "
                  f"cadence={'--' if rpm is None else f'{rpm:.0f}'} rpm")
            last_reps = record.rep_count

    print("\n--- SUMMARY ---")
    print("Total reps:", pipeline.detector.rep_count)
    avg_q = pipeline.detector.average_quality()
    print("Average quality:", "--" if avg_q is None else f"{avg_q:.1f}%")
    if record is not None and record.cadence_rpm is not None:
        print(f"Cadence: {record.cadence_rpm:.1f} rpm")
    return 0


if __name__ == "__main__":
    sys.exit(main())
