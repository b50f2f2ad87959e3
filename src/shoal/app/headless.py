from __future__ import annotations

import argparse
import csv
import json
import logging
import math
import sys
from pathlib import Path
from typing import Optional

from ..sim.core.config import SimulationConfig
from ..sim.core.world import World
from ..sim.types.metrics import TickMetrics

logger = logging.getLogger(__name__)

_BASIC_HEADER = [
    "tick",
    "population",
    "rules_applied",
    "neighbor_checks",
    "wraps",
    "avg_speed",
    "polarization",
    "tick_ms",
]

_DETAILED_HEADER = [
    "tick",
    "population",
    "rules_applied",
    "neighbor_checks",
    "cohesion_links",
    "alignment_links",
    "separation_links",
    "wraps",
    "avg_speed",
    "polarization",
    "tick_ms",
    "rules_applied_ratio",
    "cohesion_links_per_agent",
    "alignment_links_per_agent",
    "separation_links_per_agent",
    "tick_ms_per_agent",
    "min_speed",
    "max_speed",
    "focus_x",
    "focus_y",
    "focus_heading",
]


def _format_basic_row(metrics: TickMetrics, tick_ms: float) -> list[object]:
    return [
        metrics.tick,
        metrics.population,
        metrics.rules_applied,
        metrics.neighbor_checks,
        metrics.wraps,
        f"{metrics.average_speed:.6f}",
        f"{metrics.polarization:.4f}",
        f"{tick_ms:.3f}",
    ]


def _format_detailed_row(world: World, metrics: TickMetrics, tick_ms: float) -> list[object]:
    population = metrics.population
    store = world.store
    speeds = [agent.speed for agent in store]
    focus = store.focus
    if population <= 0:
        rules_applied_ratio = 0.0
        cohesion_per_agent = 0.0
        alignment_per_agent = 0.0
        separation_per_agent = 0.0
        tick_ms_per_agent = 0.0
    else:
        rules_applied_ratio = metrics.rules_applied / population
        cohesion_per_agent = metrics.cohesion_links / population
        alignment_per_agent = metrics.alignment_links / population
        separation_per_agent = metrics.separation_links / population
        tick_ms_per_agent = tick_ms / population

    return [
        metrics.tick,
        population,
        metrics.rules_applied,
        metrics.neighbor_checks,
        metrics.cohesion_links,
        metrics.alignment_links,
        metrics.separation_links,
        metrics.wraps,
        f"{metrics.average_speed:.6f}",
        f"{metrics.polarization:.4f}",
        f"{tick_ms:.3f}",
        f"{rules_applied_ratio:.4f}",
        f"{cohesion_per_agent:.4f}",
        f"{alignment_per_agent:.4f}",
        f"{separation_per_agent:.4f}",
        f"{tick_ms_per_agent:.4f}",
        f"{min(speeds):.6f}",
        f"{max(speeds):.6f}",
        f"{focus.position.x:.4f}",
        f"{focus.position.y:.4f}",
        f"{focus.heading:.6f}",
    ]


def _percentile(sorted_values: list[float], percentile: float) -> float:
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    pos = (len(sorted_values) - 1) * percentile
    low = int(math.floor(pos))
    high = int(math.ceil(pos))
    if low == high:
        return float(sorted_values[low])
    weight = pos - low
    return float(sorted_values[low] + (sorted_values[high] - sorted_values[low]) * weight)


def _summary_stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p90": 0.0, "p95": 0.0, "p99": 0.0}
    sorted_values = sorted(values)
    total = sum(values)
    count = len(values)
    return {
        "min": float(sorted_values[0]),
        "max": float(sorted_values[-1]),
        "avg": float(total / count),
        "p50": _percentile(sorted_values, 0.50),
        "p90": _percentile(sorted_values, 0.90),
        "p95": _percentile(sorted_values, 0.95),
        "p99": _percentile(sorted_values, 0.99),
    }


def run_headless(
    steps: int,
    seed: Optional[int],
    log_path: Optional[Path],
    deterministic_log: bool = False,
    log_format: str = "detailed",
    summary_path: Optional[Path] = None,
    summary_window: int = 5000,
    config_path: Optional[Path] = None,
) -> World:
    config = SimulationConfig.from_yaml(config_path) if config_path else SimulationConfig()
    if seed is not None:
        config.seed = seed

    log_mode = log_format.lower().strip()
    if log_mode not in {"basic", "detailed"}:
        raise ValueError(f"Unknown log format: {log_format}")

    world = World(config)

    writer = None
    csv_file = None
    if log_path:
        csv_file = Path(log_path).open("w", newline="")
        writer = csv.writer(csv_file)
        writer.writerow(_DETAILED_HEADER if log_mode == "detailed" else _BASIC_HEADER)

    tick_ms_series: list[float] = []
    polarization_series: list[float] = []
    speed_series: list[float] = []
    wraps_total = 0
    max_tick_ms = (-1.0, -1)

    try:
        for tick in range(steps):
            metrics = world.step(tick)
            tick_ms = 0.0 if deterministic_log else metrics.tick_duration_ms
            wraps_total += metrics.wraps

            if summary_path:
                tick_ms_series.append(tick_ms)
                polarization_series.append(metrics.polarization)
                speed_series.append(metrics.average_speed)
                if tick_ms > max_tick_ms[0]:
                    max_tick_ms = (tick_ms, tick)

            if writer:
                if log_mode == "detailed":
                    writer.writerow(_format_detailed_row(world, metrics, tick_ms))
                else:
                    writer.writerow(_format_basic_row(metrics, tick_ms))
    finally:
        if csv_file:
            csv_file.close()

    logger.info("ran %d ticks with %d agents, %d wraps", steps, config.population, wraps_total)

    if summary_path:
        window = max(1, int(summary_window))
        tail_slice = slice(max(0, len(tick_ms_series) - window), len(tick_ms_series))
        summary = {
            "steps": steps,
            "seed": config.seed,
            "population": config.population,
            "log_format": log_mode,
            "deterministic_log": deterministic_log,
            "wraps": wraps_total,
            "tick_ms": _summary_stats(tick_ms_series),
            "polarization": _summary_stats(polarization_series),
            "average_speed": _summary_stats(speed_series),
            "peaks": {
                "tick_ms": None if max_tick_ms[1] < 0 else {"value": max_tick_ms[0], "tick": max_tick_ms[1]},
            },
            "tail_window": {
                "window": window,
                "tick_ms": _summary_stats(tick_ms_series[tail_slice]),
                "polarization": _summary_stats(polarization_series[tail_slice]),
            },
        }
        Path(summary_path).write_text(json.dumps(summary, indent=2))
    return world


def _configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    root = logging.getLogger("shoal")
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)


def main() -> None:
    parser = argparse.ArgumentParser(description="Headless flocking simulation")
    parser.add_argument("--steps", type=int, default=3000)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--config", type=Path, default=None, help="YAML file with simulation settings")
    parser.add_argument("--log", type=Path, default=None, help="CSV file to write metrics")
    parser.add_argument(
        "--log-format",
        choices=["basic", "detailed"],
        default="detailed",
        help="CSV format to write when --log is provided.",
    )
    parser.add_argument(
        "--summary",
        type=Path,
        default=None,
        help="Optional JSON file to write summary stats for the run.",
    )
    parser.add_argument(
        "--summary-window",
        type=int,
        default=5000,
        help="Tail window size (ticks) for summary stats.",
    )
    parser.add_argument(
        "--deterministic-log",
        action="store_true",
        help="Write deterministic CSV (tick_ms is forced to 0.000 so identical seeds match).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()
    _configure_logging(args.verbose)
    run_headless(
        args.steps,
        args.seed,
        args.log,
        deterministic_log=args.deterministic_log,
        log_format=args.log_format,
        summary_path=args.summary,
        summary_window=args.summary_window,
        config_path=args.config,
    )


if __name__ == "__main__":
    main()
