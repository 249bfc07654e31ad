"""
A contrario RANSAC (AC-RANSAC).

One consensus loop shared by every robust fit. A ConsensusKernel supplies
the minimal solver and the residual function; the loop draws samples,
scores each candidate by its number of false alarms (NFA) and keeps the
most meaningful one. The inlier threshold falls out of the NFA minimum,
so callers never pick one.

Reference: Moisan, Moulon, Monasse, "Automatic Homographic Registration
of a Pair of Images, with A Contrario Elimination of Outliers", IPOL 2012.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import numpy as np
from scipy.special import gammaln

_LN10 = np.log(10.0)
_EPS = np.finfo(np.float64).eps


@dataclass(frozen=True)
class ConsensusKernel:
    """
    Strategy for one robust estimation problem.

    solve maps minimal-sample indices to zero or more candidate models.
    residuals maps a model to (n,) squared errors over all data.
    refine optionally re-fits the winner on its inliers.
    """

    num_samples: int
    minimum_samples: int
    max_models: int
    solve: Callable[[np.ndarray], list[np.ndarray]]
    residuals: Callable[[np.ndarray], np.ndarray]
    log_alpha0: float
    mult_error: float = 1.0
    refine: Callable[[np.ndarray, np.ndarray], np.ndarray | None] | None = None


@dataclass(frozen=True)
class RobustResult:
    """
    Outcome of a consensus fit.

    inliers is empty when no model reached NFA < 0.
    threshold is the largest squared residual admitted as inlier.
    """

    model: np.ndarray
    inliers: np.ndarray
    threshold: float
    nfa: float


def _log10_combinations(n: int, k: np.ndarray) -> np.ndarray:
    """log10 of C(n, k), elementwise over k."""
    k = np.asarray(k, dtype=np.float64)
    return (gammaln(n + 1) - gammaln(k + 1) - gammaln(n - k + 1)) / _LN10


def _best_nfa(
    sorted_errors: np.ndarray,
    kernel: ConsensusKernel,
    log_e0: float,
    max_threshold: float,
    logc_n: np.ndarray,
    logc_k: np.ndarray,
) -> tuple[float, int]:
    """
    Minimum NFA over candidate inlier counts.

    Returns:
        (nfa, k) where k is the number of inliers at the minimum
    """
    s = kernel.minimum_samples
    n = len(sorted_errors)
    k = np.arange(s + 1, n + 1)
    e = sorted_errors[k - 1]

    with np.errstate(invalid="ignore"):
        log_alpha = kernel.log_alpha0 + kernel.mult_error * np.log10(e + _EPS)
        nfa = log_e0 + log_alpha * (k - s) + logc_n[k] + logc_k[k]
    nfa[~(e <= max_threshold)] = np.inf
    nfa[~np.isfinite(nfa)] = np.inf

    best = int(np.argmin(nfa))
    return float(nfa[best]), int(k[best])


def ac_ransac(
    kernel: ConsensusKernel,
    rng: np.random.Generator,
    max_iterations: int = 1024,
    precision: float = np.inf,
) -> RobustResult | None:
    """
    Run AC-RANSAC on a kernel.

    Args:
        kernel: Problem definition (solver + residuals)
        rng: Seeded generator used for sampling
        max_iterations: Fixed iteration budget (10% held in reserve)
        precision: Upper bound on squared residuals of inliers

    Returns:
        RobustResult for the best model found, or None if no sample ever
        produced a model
    """
    n = kernel.num_samples
    s = kernel.minimum_samples
    if n <= s:
        return None

    reserve = max_iterations // 10
    iterations = max_iterations - reserve

    counts = np.arange(n + 1, dtype=np.float64)
    logc_n = _log10_combinations(n, counts)
    logc_k = np.full(n + 1, np.inf)
    logc_k[s:] = (
        gammaln(counts[s:] + 1) - gammaln(s + 1) - gammaln(counts[s:] - s + 1)
    ) / _LN10
    log_e0 = np.log10(kernel.max_models * (n - s))

    pool = np.arange(n)
    best_model = None
    best_inliers = np.zeros(0, dtype=np.int64)
    best_threshold = np.inf
    min_nfa = np.inf

    it = 0
    while it < iterations:
        sample = rng.choice(pool, size=s, replace=False)
        better = False

        for model in kernel.solve(sample):
            errors = np.asarray(kernel.residuals(model), dtype=np.float64)
            errors = np.where(np.isfinite(errors), errors, np.inf)
            order = np.argsort(errors, kind="stable")

            nfa, k = _best_nfa(errors[order], kernel, log_e0, precision, logc_n, logc_k)
            if nfa < min_nfa:
                better = True
                min_nfa = nfa
                best_model = model
                best_inliers = np.sort(order[:k])
                best_threshold = float(errors[order[k - 1]])

        # Spend the reserve sampling only from the first meaningful consensus
        if better and min_nfa < 0 and reserve > 0 and len(best_inliers) > s:
            iterations = it + 1 + reserve
            reserve = 0
            pool = best_inliers

        it += 1

    if best_model is None:
        return None

    if min_nfa >= 0:
        return RobustResult(
            model=best_model,
            inliers=np.zeros(0, dtype=np.int64),
            threshold=best_threshold,
            nfa=min_nfa,
        )

    if kernel.refine is not None:
        refined = kernel.refine(best_model, best_inliers)
        if refined is not None:
            best_model = refined

    return RobustResult(
        model=best_model,
        inliers=best_inliers,
        threshold=best_threshold,
        nfa=min_nfa,
    )
