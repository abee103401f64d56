"""Main entry point: python -m niso"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import os
import sys
from datetime import datetime

import numpy as np

from niso import __version__
from niso.config import load_config
from niso.errors import NisoError
from niso.noise import NoiseModel
from niso.optimizer import OptimizationReport, TqqcOptimizer
from niso.tqqc.stat_test import base_threshold, exceeds_critical_noise, threshold_for_qubits
from niso.tqqc.types import TqqcConfig

HISTORY_COLUMNS = [
    "iteration",
    "layer",
    "delta",
    "step",
    "parity_plus",
    "parity_minus",
    "parity_selected",
    "improvement",
    "inner_count",
    "direction",
    "significant",
    "z",
]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="niso",
        description="TQQC delta search -- treat hardware noise as a parameter to optimize",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v info, -vv debug")

    sub = parser.add_subparsers(dest="command")

    # optimize
    opt = sub.add_parser("optimize", help="Run the delta search")
    opt.add_argument("--config", type=str, help="YAML config file (CLI flags override it)")
    opt.add_argument("--qubits", type=int, help="Qubit count (default 7)")
    opt.add_argument("--noise", type=float, help="Depolarizing noise level (default 0.02)")
    opt.add_argument("--shots", type=int, help="Shots per execution (default 8192)")
    opt.add_argument("--points", dest="outer_loop", type=int, help="Outer iteration budget")
    opt.add_argument("--inner-max", type=int, help="Max inner repetitions")
    opt.add_argument("--step-amp", type=float, help="Initial step amplitude")
    opt.add_argument("--window", type=int, help="Convergence window")
    opt.add_argument("--decay-rate", type=float, help="Step decay per iteration")
    opt.add_argument("--strategy", choices=["global", "layerwise"], help="Offset parametrization")
    opt.add_argument("--seed", type=int, default=None, help="Random seed for reproducibility")
    opt.add_argument("--backend", choices=["simulator", "hardware"], help="Execution backend")
    opt.add_argument("--no-stat-test", action="store_true", help="Accept any parity difference")
    opt.add_argument("--coherent-phase", type=float, default=0.0,
                     help="Simulator coherent phase error per two-qubit gate (rad)")
    opt.add_argument("--quick", action="store_true", help="Start from the reduced-budget preset")
    opt.add_argument("--csv", action="store_true", help="Export iteration history CSV")
    opt.add_argument("--json", action="store_true", help="Export the full result as JSON")
    opt.add_argument("--out-dir", type=str, default=".", help="Export directory")

    # scan
    scan = sub.add_parser("scan", help="Sample the parity landscape over delta")
    scan.add_argument("--qubits", type=int, default=7)
    scan.add_argument("--noise", type=float, default=0.02)
    scan.add_argument("--shots", type=int, default=8192)
    scan.add_argument("--span", type=float, default=0.5, help="Scan delta in [-span, span]")
    scan.add_argument("--points", type=int, default=21)
    scan.add_argument("--coherent-phase", type=float, default=0.0)
    scan.add_argument("--seed", type=int, default=None)

    # thresholds
    thr = sub.add_parser("thresholds", help="Print the depth-corrected threshold table")
    thr.add_argument("--noise", type=float, default=0.02)
    thr.add_argument("--max-qubits", type=int, default=12)

    return parser


def config_from_args(args: argparse.Namespace) -> TqqcConfig:
    if args.config:
        config = load_config(args.config)
    elif args.quick:
        config = TqqcConfig.quick()
    else:
        config = TqqcConfig()
    overrides = {
        name: getattr(args, name)
        for name in (
            "qubits", "noise", "shots", "outer_loop", "inner_max", "step_amp",
            "window", "decay_rate", "strategy", "seed", "backend",
        )
        if getattr(args, name) is not None
    }
    if args.no_stat_test:
        overrides["use_statistical_test"] = False
    return TqqcConfig(**{**config.to_dict(), **overrides})


def print_report(report: OptimizationReport) -> None:
    result = report.result
    metrics = report.metrics
    print()
    print("=" * 50)
    print(" TQQC RESULTS")
    print("=" * 50)
    print(f"  delta_opt:           {result.delta_opt:+.6f}")
    if result.layer_deltas:
        layers = ", ".join(f"{d:+.4f}" for d in result.layer_deltas)
        print(f"  layer deltas:        [{layers}]")
    print(f"  Baseline parity:     {result.parity_baseline:.6f}")
    print(f"  Final parity:        {result.parity_final:.6f}")
    print(f"  Improvement:         {result.improvement:+.6f} ({result.improvement_percent:+.2f}%)")
    print(f"  Iterations:          {result.iterations}")
    print(f"  Early stopped:       {result.early_stopped}")
    print(f"  Ties:                {result.ties_count}")
    print(f"  Significant moves:   {result.significant_moves}")
    print(f"  Inner iterations:    {result.total_inner_iterations}")
    print(f"  Circuit executions:  {metrics.circuit_executions}")
    print(f"  Total shots:         {metrics.total_shots}")
    print(f"  Wall time:           {metrics.wall_time_s:.2f}s")
    print("=" * 50)


def export_csv(report: OptimizationReport, directory: str) -> str:
    """Write the iteration history to <directory>/tqqc_<timestamp>.csv"""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = os.path.join(directory, f"tqqc_{timestamp}.csv")
    with open(filepath, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(HISTORY_COLUMNS)
        for record in report.result.history:
            row = record.to_dict()
            writer.writerow([row[column] for column in HISTORY_COLUMNS])
    return filepath


def export_json(report: OptimizationReport, config: TqqcConfig, directory: str) -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = os.path.join(directory, f"tqqc_{timestamp}.json")
    with open(filepath, "w") as f:
        json.dump({"config": config.to_dict(), **report.to_dict()}, f, indent=2)
    return filepath


def run_optimize(args: argparse.Namespace) -> None:
    config = config_from_args(args)
    noise_model = None
    if args.coherent_phase:
        noise_model = NoiseModel.from_depol(config.noise).with_coherent_phase(args.coherent_phase)

    print(f"Qubits: {config.qubits}  noise: {config.noise}  shots: {config.shots}")
    print(
        f"Budget: {config.outer_loop} outer x {config.inner_max} inner, "
        f"strategy={config.strategy.value}"
    )
    print(f"Backend: {config.backend}  seed: {config.seed}")

    optimizer = TqqcOptimizer(config, noise_model=noise_model)
    try:
        report = optimizer.optimize_full()
    finally:
        optimizer.backend.close()
    print_report(report)

    if args.csv:
        print(f"History exported to {export_csv(report, args.out_dir)}")
    if args.json:
        print(f"Result exported to {export_json(report, config, args.out_dir)}")


def run_scan(args: argparse.Namespace) -> None:
    config = TqqcConfig(qubits=args.qubits, noise=args.noise, shots=args.shots, seed=args.seed)
    model = NoiseModel.from_depol(config.noise).with_coherent_phase(args.coherent_phase)
    optimizer = TqqcOptimizer(config, noise_model=model)
    deltas = np.linspace(-args.span, args.span, args.points)
    print(f"{'delta':>10}  {'parity':>10}")
    best = None
    for delta, parity in optimizer.scan_delta(deltas):
        print(f"{delta:>+10.4f}  {parity:>10.5f}")
        if best is None or parity > best[1]:
            best = (delta, parity)
    if best is not None:
        print(f"Best: delta={best[0]:+.4f} parity={best[1]:.5f}")


def run_thresholds(args: argparse.Namespace) -> None:
    base = base_threshold(args.noise)
    print(f"Noise {args.noise}: reference threshold {base:.4f} at 5 qubits")
    print(f"{'qubits':>7}  {'threshold':>10}  {'past critical':>14}")
    for n in range(2, args.max_qubits + 1):
        flag = exceeds_critical_noise(args.noise, n)
        print(f"{n:>7}  {threshold_for_qubits(n, base):>10.5f}  {str(flag):>14}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        if args.command == "optimize":
            run_optimize(args)
        elif args.command == "scan":
            run_scan(args)
        elif args.command == "thresholds":
            run_thresholds(args)
        else:
            parser.print_help()
    except NisoError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
