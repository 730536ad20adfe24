#!/usr/bin/env python3
"""
Batch Membrane Simulation Runner

Sweeps the concentration gradient over independent simulations in parallel,
one simulator per process, and writes one trace per run plus a manifest.
"""

import argparse
import json
import sys
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Dict

import numpy as np

from membrane_sim import SimulationConfig, analysis, run_model, utils


def run_single_simulation(
    gradient: float, radius: float, temp: float, duration: float, seed: int, output_path: str
) -> Dict[str, Any]:
    """
    Run a single simulation and save it.

    Must be at module level (not nested) for pickling.
    """
    config = SimulationConfig(
        radius_um=radius,
        gradient=gradient,
        temperature_c=temp,
        duration=duration,
        seed=seed,
    )
    trace = run_model(config)
    utils.save_trace(output_path, trace)
    summary = analysis.summarize_trace(trace) if len(trace) else {}
    return {
        "output_path": output_path,
        "gradient": gradient,
        "seed": seed,
        "samples": len(trace),
        "mean_in_rate": summary.get("mean_in_rate"),
        "mean_out_rate": summary.get("mean_out_rate"),
        "success": True,
    }


def main():
    parser = argparse.ArgumentParser(description="Sweep the concentration gradient")
    parser.add_argument("--g-min", type=float, default=0.0, help="smallest gradient (default: 0.0)")
    parser.add_argument("--g-max", type=float, default=1.0, help="largest gradient (default: 1.0)")
    parser.add_argument("--steps", type=int, default=11, help="number of gradient values (default: 11)")
    parser.add_argument("--radius", type=float, default=12.0, help="cell radius in µm (default: 12)")
    parser.add_argument("--temp", type=float, default=25.0, help="temperature in °C (default: 25)")
    parser.add_argument("--duration", type=float, default=10.0, help="simulated seconds (default: 10)")
    parser.add_argument("--jobs", type=int, default=1, help="parallel processes (default: 1)")
    parser.add_argument("--base-seed", type=int, default=42, help="seed of the first run (default: 42)")
    args = parser.parse_args()

    gradients = np.linspace(args.g_min, args.g_max, args.steps)
    timestamp = utils.now_str()
    batch_dir = Path("results") / "batches" / f"membrane_sweep_{timestamp}"
    batch_dir.mkdir(parents=True, exist_ok=True)

    manifest = {
        "gradients": gradients.tolist(),
        "radius_um": args.radius,
        "temperature_c": args.temp,
        "duration": args.duration,
        "base_seed": args.base_seed,
        "jobs": args.jobs,
        "timestamp": timestamp,
    }
    manifest_path = batch_dir / "manifest.json"

    print("Gradient sweep started:")
    print(f"  Gradients: {args.g_min} .. {args.g_max} ({args.steps} runs)")
    print(f"  Parallel jobs: {args.jobs}")
    print(f"  Output directory: {batch_dir}")
    print()

    tasks = []
    for i, g in enumerate(gradients):
        seed = args.base_seed + i
        output_path = str(batch_dir / f"g{g:.3f}_s{seed}.npz")
        tasks.append((float(g), args.radius, args.temp, args.duration, seed, output_path))

    start_time = time.time()
    results = []
    failed = []
    with ProcessPoolExecutor(max_workers=args.jobs) as executor:
        future_to_task = {executor.submit(run_single_simulation, *task): task for task in tasks}
        completed = 0
        for future in as_completed(future_to_task):
            completed += 1
            task = future_to_task[future]
            try:
                result = future.result()
                results.append(result)
                print(f"  [{completed}/{len(tasks)}] Completed: gradient={result['gradient']:.3f}")
            except Exception as e:
                failed.append({"task": list(task), "error": str(e)})
                print(f"  [{completed}/{len(tasks)}] FAILED: gradient={task[0]:.3f} - {e}")

    elapsed_time = time.time() - start_time
    manifest["results"] = {
        "total": len(tasks),
        "successful": len(results),
        "failed": len(failed),
        "elapsed_seconds": elapsed_time,
    }
    manifest["simulations"] = sorted(results, key=lambda r: r["gradient"])
    if failed:
        manifest["failures"] = failed
    with open(manifest_path, "w") as f:
        json.dump(manifest, f, indent=2)

    print()
    print("=" * 60)
    print("Gradient sweep completed!")
    print(f"  Successful: {len(results)}/{len(tasks)}")
    print(f"  Total time: {elapsed_time:.2f} seconds")
    print(f"  Manifest: {manifest_path}")
    print("=" * 60)
    return 0 if not failed else 1


if __name__ == "__main__":
    sys.exit(main())
