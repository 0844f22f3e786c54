"""Random variate generators used by the Bayesian engine.

All samplers draw from an explicit ``numpy.random.Generator`` so Monte Carlo
results are reproducible under a fixed seed. The algorithms are the classical
scalar ones (Box-Muller, Marsaglia-Tsang), not numpy's own samplers.
"""

import math
from typing import Optional

import numpy as np

from engine_errors import InvalidArgumentError
from engine_settings import settings


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Create a random source, falling back to the configured seed"""
    if seed is None:
        seed = settings.RANDOM_SEED
    return np.random.default_rng(seed)


def _open_uniform(rng: np.random.Generator) -> float:
    # (0, 1], safe to take the logarithm of
    return 1.0 - rng.random()


def random_normal(rng: np.random.Generator) -> float:
    """Standard normal draw via the Box-Muller transform"""
    u1 = _open_uniform(rng)
    u2 = rng.random()
    return math.sqrt(-2 * math.log(u1)) * math.cos(2 * math.pi * u2)


def gamma_sample(shape: float, rng: np.random.Generator) -> float:
    """Gamma(shape, 1) draw using Marsaglia and Tsang's method.

    Shapes below 1 are boosted to shape + 1 and rescaled by U^(1/shape).
    The rejection loop has no iteration cap; acceptance takes about one
    round on average.
    """
    if not shape > 0 or math.isinf(shape):
        raise InvalidArgumentError(f"Gamma shape must be positive and finite, got {shape}")

    if shape < 1:
        return gamma_sample(shape + 1, rng) * rng.random() ** (1 / shape)

    d = shape - 1 / 3
    c = 1 / math.sqrt(9 * d)

    while True:
        x = random_normal(rng)
        v = 1 + c * x
        while v <= 0:
            x = random_normal(rng)
            v = 1 + c * x

        v = v * v * v
        u = _open_uniform(rng)

        if u < 1 - 0.0331 * (x * x) * (x * x):
            return d * v

        if math.log(u) < 0.5 * x * x + d * (1 - v + math.log(v)):
            return d * v


def beta_sample(alpha: float, beta: float, rng: np.random.Generator) -> float:
    """Beta(alpha, beta) draw as the ratio of two independent Gamma draws"""
    gamma_alpha = gamma_sample(alpha, rng)
    gamma_beta = gamma_sample(beta, rng)
    return gamma_alpha / (gamma_alpha + gamma_beta)
