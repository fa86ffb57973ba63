#!/usr/bin/env python3
"""
All-in-one script: run the procurement simulator, then build the HTML dashboard.
"""

import argparse
import os
import subprocess
import sys
from pathlib import Path

_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def run_command(cmd, description):
    """Run a command and print status."""
    print("\n" + "=" * 70)
    print(f"{description}")
    print("=" * 70)
    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, cwd=_ROOT)
    if result.returncode != 0:
        print(f"Error in {description}")
        return False
    print(f"{description} completed successfully")
    return True


def latest_log(log_dir: Path):
    if not log_dir.exists():
        return None
    csv_files = sorted(log_dir.glob("procurement_orders_*.csv"), key=lambda p: p.stat().st_mtime, reverse=True)
    return csv_files[0] if csv_files else None


def main():
    parser = argparse.ArgumentParser(description="Run the procurement simulator and visualize its logs")
    parser.add_argument("--run-sim", action="store_true", help="Run the simulator")
    parser.add_argument("--visualize", action="store_true", help="Visualize the latest simulator log")
    parser.add_argument("--horizon", type=float, default=200.0, help="Simulation horizon")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--strategy", type=str, default="balanced", help="Optimization strategy")
    parser.add_argument("--log-dir", type=str, default="data/logs")
    args = parser.parse_args()

    # Default to everything if nothing specified
    if not (args.run_sim or args.visualize):
        args.run_sim = args.visualize = True

    success = True
    if args.run_sim:
        cmd = [
            sys.executable,
            "simulation/simulator.py",
            "--horizon", str(args.horizon),
            "--seed", str(args.seed),
            "--strategy", args.strategy,
            "--log-dir", args.log_dir,
        ]
        success = run_command(cmd, "Running procurement simulator") and success

    if args.visualize:
        log = latest_log(Path(_ROOT) / args.log_dir)
        if log is None:
            print("No log files found, skipping visualization")
        else:
            cmd = [sys.executable, "dashboard/visualize_logs.py", "--log", str(log), "--outdir", args.log_dir]
            success = run_command(cmd, "Visualizing simulator logs") and success

    print("\n" + "=" * 70)
    print("All steps completed successfully" if success else "Some steps failed, check output above")
    print("=" * 70)
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
