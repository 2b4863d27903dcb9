#!/usr/bin/env python3
"""Summarize a training progress JSONL file written by PPOTrainer."""

import argparse
import json
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from combat_bot.config import trainer_config

SPARK_CHARS = "▁▂▃▄▅▆▇█"


def read_progress(path: Path) -> list[dict]:
    """Read every record, skipping lines that are not valid JSON."""
    records = []
    with open(path) as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                print(f"Skipping malformed line {line_no}", file=sys.stderr)
    return records


def sparkline(values: list[float], width: int = 30) -> str:
    if not values:
        return ""
    values = values[-width:]
    low, high = min(values), max(values)
    span = (high - low) or 1.0
    return "".join(
        SPARK_CHARS[min(int((v - low) / span * len(SPARK_CHARS)), len(SPARK_CHARS) - 1)]
        for v in values
    )


def win_rate(record: dict) -> float:
    episodes = record.get("episodes", 0)
    return record.get("wins", 0) / episodes if episodes else 0.0


def main() -> None:
    parser = argparse.ArgumentParser(description="Show training progress")
    parser.add_argument(
        "path",
        nargs="?",
        default=trainer_config.progress_path,
        help="Progress JSONL file",
    )
    parser.add_argument("--last", "-n", type=int, default=10, help="Rows to show")
    args = parser.parse_args()

    path = Path(args.path)
    if not path.exists():
        print(f"Progress file not found: {path}", file=sys.stderr)
        sys.exit(1)

    records = read_progress(path)
    if not records:
        print("No progress records yet.")
        return

    print(f"\nTRAINING PROGRESS ({len(records)} rollouts)\n")
    print("=" * 78)
    print(f"{'Step':>12} {'Reward':>9} {'W/L/D':>11} {'Win%':>7} {'Entropy':>8} {'AnyDmg':>7} {'FirstHit':>8}")
    print("-" * 78)
    for r in records[-args.last:]:
        wld = f"{r.get('wins', 0)}/{r.get('losses', 0)}/{r.get('draws', 0)}"
        print(
            f"{r.get('step', 0):>12,} {r.get('avg_reward', 0.0):>9.3f} {wld:>11} "
            f"{win_rate(r):>6.1%} {r.get('entropy', 0.0):>8.3f} "
            f"{r.get('any_damage_rate', 0.0):>6.1%} {r.get('first_hit_rate', 0.0):>7.1%}"
        )
    print("=" * 78)

    print(f"Reward   {sparkline([r.get('avg_reward', 0.0) for r in records])}")
    print(f"Win rate {sparkline([win_rate(r) for r in records])}")
    print(f"Entropy  {sparkline([r.get('entropy', 0.0) for r in records])}")


if __name__ == "__main__":
    main()
