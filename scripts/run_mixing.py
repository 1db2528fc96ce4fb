#!/usr/bin/env python3
"""Run a CatMix mating simulation from a YAML config and print diagnostics.

Usage:
    python3 scripts/run_mixing.py configs/default.yaml
    python3 scripts/run_mixing.py configs/default.yaml --scenario configs/collapse.yaml \
        --workers 4 --plots results/figures
"""

import json
import sys
from pathlib import Path

from catmix.config import default_config, load_config
from catmix.environment import CategoricalEnvironment
from catmix.model import run_mixing_simulation
from catmix.perf import PerfMonitor
from catmix.recorder import MixingRecorder


def build_parser():
    import argparse
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('config', nargs='?', default=None,
                        help='Base YAML config (defaults when omitted)')
    parser.add_argument('--scenario', default=None,
                        help='Scenario override YAML')
    parser.add_argument('--workers', type=int, default=None,
                        help='Override simulation.parallel_workers')
    parser.add_argument('--steps', type=int, default=None,
                        help='Override simulation.n_steps')
    parser.add_argument('--plots', default=None,
                        help='Directory for PNG figures')
    parser.add_argument('--perf', action='store_true',
                        help='Print phase timing')
    return parser


def parse_args(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.scenario is not None and args.config is None:
        parser.error("--scenario overrides a base config; give the base config too")
    return args


def main(argv=None):
    args = parse_args(argv)

    overrides = {'simulation': {}}
    if args.workers is not None:
        overrides['simulation']['parallel_workers'] = args.workers
    if args.steps is not None:
        overrides['simulation']['n_steps'] = args.steps

    if args.config is None:
        config = default_config()
        for key, value in overrides['simulation'].items():
            setattr(config.simulation, key, value)
    else:
        config = load_config(args.config, args.scenario, sweep_overrides=overrides)

    env = CategoricalEnvironment.from_config(config)
    recorder = MixingRecorder(enabled=config.output.record_interval > 0,
                              interval=max(config.output.record_interval, 1))
    perf = PerfMonitor(enabled=args.perf)

    n_steps = config.simulation.n_steps
    print(f"Running {n_steps} steps, {env.n_locations} locations, "
          f"{config.simulation.parallel_workers} worker(s), seed {config.simulation.seed}")

    def progress(step, total):
        if (step + 1) % max(1, total // 10) == 0 or step + 1 == total:
            print(f"  step {step + 1}/{total}")

    result = run_mixing_simulation(config, env=env, progress_callback=progress,
                                   recorder=recorder, perf=perf)

    print()
    print(env.describe_population())
    print()
    env.print_mate_location_frequencies()
    report = result.final_report
    print(f"\nPartner searches: {int(result.step_seekers.sum())}, "
          f"success rate {result.success_rate:.1%}, "
          f"degenerate-row failures {int(result.step_degenerate.sum())}")
    print(f"Max |observed − expected| (last step table): {report.max_abs_deviation:.3f}")

    out_dir = Path(config.output.directory)
    if recorder.snapshots:
        recorder.save(str(out_dir / "mixing_snapshots.npz"))
        print(f"Saved {len(recorder.snapshots)} snapshots to {out_dir / 'mixing_snapshots.npz'}")

    if args.plots:
        from catmix.viz import (
            plot_bucket_counts,
            plot_location_population,
            plot_mixing_comparison,
        )
        plot_dir = Path(args.plots)
        plot_dir.mkdir(parents=True, exist_ok=True)
        if result.final_probabilities is not None:
            plot_mixing_comparison(result.final_probabilities, report.normalized,
                                   save_path=str(plot_dir / "mixing_comparison.png"))
        plot_location_population(result, save_path=str(plot_dir / "eligible_by_location.png"))
        plot_bucket_counts(env.index.counts(), save_path=str(plot_dir / "index_composition.png"))
        print(f"Figures written to {plot_dir}")

    if args.perf:
        print(perf.report())
        print(json.dumps(result.perf_summary, indent=2))
    return 0


if __name__ == '__main__':
    sys.exit(main())
