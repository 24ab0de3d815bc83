#!/usr/bin/env python3
"""
SF40 plots - render scans and transaction logs
Reads the CSV written by `sf40 scan --out` and/or `sf40 --csv`.
"""

import argparse
import csv

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402


def load_scan(filename):
    """Load angle/distance rows; negative distances are invalid readings."""
    angles, distances = [], []
    with open(filename, "r") as f:
        for row in csv.DictReader(f):
            angles.append(float(row["angle_deg"]))
            distances.append(int(row["distance_cm"]))
    return np.array(angles), np.array(distances)


def load_transactions(filename):
    data = {"session_start": None, "operations": [], "durations": [], "states": []}
    with open(filename, "r") as f:
        for row in csv.DictReader(f):
            if data["session_start"] is None:
                data["session_start"] = row["session_start"]
            data["operations"].append(row["operation"])
            data["durations"].append(float(row["duration_ms"]))
            data["states"].append(row.get("state", "COMPLETE"))
    return data


def graph_scan(angles, distances, output, max_range_m=None):
    """Polar plot of one revolution"""
    fig = plt.figure(figsize=(8, 8))
    ax = fig.add_subplot(projection="polar")

    valid = distances >= 0
    r = distances[valid] / 100.0
    theta = np.radians(angles[valid])
    ax.scatter(theta, r, s=4, c=r, cmap="viridis")

    ax.set_theta_zero_location("N")
    ax.set_theta_direction(-1)
    if max_range_m:
        ax.set_rmax(max_range_m)
    ax.set_title(f"SF40 scan ({valid.sum()} of {len(distances)} points)",
                 fontsize=14, weight="bold")

    plt.tight_layout()
    plt.savefig(output, dpi=150, bbox_inches="tight")
    print(f"Created: {output}")
    plt.close()


def graph_transactions(data, output):
    """Bar chart of mean transaction time per operation, timeouts in red"""
    fig, ax = plt.subplots(figsize=(12, 8))

    ops = {}
    timeouts = {}
    for op, duration, state in zip(data["operations"], data["durations"], data["states"]):
        ops.setdefault(op, []).append(duration)
        if state == "TIMEOUT":
            timeouts[op] = timeouts.get(op, 0) + 1

    sorted_ops = sorted(ops.items(), key=lambda x: np.mean(x[1]), reverse=True)
    labels = [x[0] for x in sorted_ops]
    values = [float(np.mean(x[1])) for x in sorted_ops]
    colors = ["#ff6666" if timeouts.get(label) else "#6699ff" for label in labels]

    bars = ax.barh(labels, values, color=colors, edgecolor="black", linewidth=1.0)
    for label, bar in zip(labels, bars):
        note = f" {bar.get_width():.1f} ms"
        if timeouts.get(label):
            note += f" ({timeouts[label]} timeouts)"
        ax.text(bar.get_width(), bar.get_y() + bar.get_height() / 2, note,
                ha="left", va="center", fontsize=9)

    ax.set_xlabel("Mean duration (ms)", fontsize=12, weight="bold")
    ax.set_title(f"SF40 transactions\n{data['session_start'] or 'Unknown'}",
                 fontsize=14, weight="bold")
    ax.grid(axis="x", alpha=0.3, linestyle="--")

    plt.tight_layout()
    plt.savefig(output, dpi=150, bbox_inches="tight")
    print(f"Created: {output}")
    plt.close()


def main():
    parser = argparse.ArgumentParser(description="Plot SF40 scan and transaction CSVs")
    parser.add_argument("--scan", help="scan CSV from `sf40 scan --out`")
    parser.add_argument("--transactions", help="transaction CSV from `sf40 --csv`")
    parser.add_argument("--output-prefix", default="sf40")
    parser.add_argument("--max-range", type=float, help="radial limit in metres")
    args = parser.parse_args()

    if not args.scan and not args.transactions:
        parser.error("give --scan and/or --transactions")

    if args.scan:
        angles, distances = load_scan(args.scan)
        graph_scan(angles, distances, f"{args.output_prefix}_scan.png", args.max_range)

    if args.transactions:
        data = load_transactions(args.transactions)
        print(f"Loaded {len(data['operations'])} transactions")
        graph_transactions(data, f"{args.output_prefix}_transactions.png")


if __name__ == "__main__":
    main()
