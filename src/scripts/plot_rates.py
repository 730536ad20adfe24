"""
Rate and occupancy plotter for membrane simulation traces.
"""
import argparse
import sys
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from membrane_sim import analysis, utils


def render_trace(trace: utils.SimulationTrace, output_path: str, fit: bool = True) -> None:
    meta = trace.meta or {}
    fig, (ax_rate, ax_occ) = plt.subplots(2, 1, figsize=(8, 7), sharex=True)

    ax_rate.plot(trace.times, trace.in_rates, "o-", color="#34d399", label="enter")
    ax_rate.plot(trace.times, trace.out_rates, "s-", color="#a7f3d0", label="exit")
    ax_rate.set_ylabel("crossings / s")
    ax_rate.legend()
    ax_rate.grid(alpha=0.3)

    ax_occ.plot(trace.times, trace.inside_fraction, "o-", color="#ef4444", label="inside fraction")
    if "target_fraction" in meta:
        ax_occ.axhline(meta["target_fraction"], color="grey", ls="--", label="reseed target")
    if fit and len(trace) >= analysis.MIN_SAMPLES:
        try:
            res = analysis.fit_relaxation(trace)
        except RuntimeError as e:
            print(f"Relaxation fit failed: {e}")
        else:
            t = np.linspace(trace.times[0], trace.times[-1], 200)
            ax_occ.plot(t, analysis.relaxation_curve(t, res.f_inf, res.f0, res.tau), "k-", lw=1,
                        label=f"fit tau={res.tau:.2f}s")
    ax_occ.set_xlabel("time (s)")
    ax_occ.set_ylabel("inside / active")
    ax_occ.set_ylim(0.0, 1.0)
    ax_occ.legend()
    ax_occ.grid(alpha=0.3)

    title = "Membrane exchange"
    if meta:
        title += (f"  R={meta.get('radius_um', '?')} µm  ΔC={meta.get('gradient', '?')}"
                  f"  T={meta.get('temperature_c', '?')} °C")
    fig.suptitle(title)
    fig.tight_layout()
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    print(f"Saved plot to {output_path}")


def main():
    parser = argparse.ArgumentParser(description="Plot a membrane simulation trace")
    parser.add_argument("trace", help="trace .npz written by run_sim.py")
    parser.add_argument("--out", default=None, help="output image (default: next to the trace)")
    parser.add_argument("--no-fit", action="store_true", help="skip the relaxation fit")
    args = parser.parse_args()

    trace = utils.load_trace(args.trace)
    out = args.out or str(Path(args.trace).with_suffix(".png"))
    render_trace(trace, out, fit=not args.no_fit)
    return 0


if __name__ == "__main__":
    sys.exit(main())
