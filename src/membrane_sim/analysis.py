"""
Post-run analysis of sampled traces.

Two views of how the population settles:
1. Relaxation fit - inside fraction f(t) = f_inf + (f0 - f_inf) exp(-t / tau)
2. Net flux trend - linear regression of (in_rate - out_rate) against time
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import numpy as np
from scipy.optimize import curve_fit
from scipy.stats import linregress

from .utils import SimulationTrace

MIN_SAMPLES = 3


@dataclass(frozen=True)
class RelaxationFit:
    f_inf: float
    f0: float
    tau: float


def relaxation_curve(t, f_inf, f0, tau):
    return f_inf + (f0 - f_inf) * np.exp(-t / tau)


def validate_trace(trace: SimulationTrace) -> None:
    if len(trace) < MIN_SAMPLES:
        raise ValueError(
            f"Too few samples ({len(trace)}) for analysis. Need at least {MIN_SAMPLES}."
        )


def fit_relaxation(trace: SimulationTrace) -> RelaxationFit:
    """
    Fit an exponential relaxation to the inside fraction.

    Raises:
        ValueError: if the trace is too short
        RuntimeError: if the least-squares fit does not converge
    """
    validate_trace(trace)
    t = np.asarray(trace.times, dtype=np.float64)
    f = np.asarray(trace.inside_fraction, dtype=np.float64)

    span = max(float(t[-1] - t[0]), 1.0)
    p0 = (float(f[-1]), float(f[0]), span / 3.0)
    bounds = ([0.0, 0.0, 1e-3], [1.0, 1.0, 1e3 * span])
    popt, _ = curve_fit(relaxation_curve, t, f, p0=p0, bounds=bounds, maxfev=5000)
    return RelaxationFit(f_inf=float(popt[0]), f0=float(popt[1]), tau=float(popt[2]))


def net_flux_trend(trace: SimulationTrace) -> Dict[str, float]:
    """Slope/intercept of net inward flux over time."""
    validate_trace(trace)
    net = np.asarray(trace.in_rates) - np.asarray(trace.out_rates)
    reg = linregress(np.asarray(trace.times, dtype=np.float64), net)
    return {
        "slope": float(reg.slope),
        "intercept": float(reg.intercept),
        "r_value": float(reg.rvalue),
        "mean_net": float(np.mean(net)),
    }


def summarize_trace(trace: SimulationTrace) -> Dict[str, float]:
    if len(trace) == 0:
        raise ValueError("Empty trace; nothing to summarize.")
    mean_in = float(np.mean(trace.in_rates))
    mean_out = float(np.mean(trace.out_rates))
    return {
        "samples": float(len(trace)),
        "mean_in_rate": mean_in,
        "mean_out_rate": mean_out,
        "in_out_ratio": mean_in / max(mean_out, 1e-9),
        "final_inside_fraction": float(trace.inside_fraction[-1]),
    }
