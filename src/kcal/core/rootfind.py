# src/kcal/core/rootfind.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class RootResult:
    x: float
    iterations: int
    converged: bool
    residual: float


def newton_fixed_rate(
    f: Callable[[float], float],
    x0: float,
    *,
    rate: float,
    tol: float,
    max_iter: int,
) -> RootResult:
    """
    Newton-style iteration with a constant derivative.

    At each step the residual r = f(x) is evaluated; the loop stops when
    |r| < tol, otherwise x += r / rate. f is expected to return
    target - g(x) for a monotone g whose slope is close to rate.

    Returns
    -------
    RootResult
        The last estimate, whether or not the tolerance was reached.
        iterations counts residual evaluations.

    Notes
    -----
    A non-finite residual stops the loop early with converged=False.
    """
    if rate == 0:
        raise ValueError("rate must be non-zero")
    if tol <= 0:
        raise ValueError("tol must be positive")
    if max_iter < 1:
        raise ValueError("max_iter must be >= 1")

    x = float(x0)
    r = float("nan")
    for it in range(1, max_iter + 1):
        r = f(x)
        if not math.isfinite(r):
            return RootResult(x, it, False, r)
        if abs(r) < tol:
            return RootResult(x, it, True, r)
        x = x + r / rate

    return RootResult(x, max_iter, False, r)
