import math
import warnings

from engine_errors import InvalidArgumentError


# Acklam's rational approximation coefficients
_ACKLAM_A = (
    -3.969683028665376e01,
    2.209460984245205e02,
    -2.759285104469687e02,
    1.383577518672690e02,
    -3.066479806614716e01,
    2.506628277459239e00,
)
_ACKLAM_B = (
    -5.447609879822406e01,
    1.615858368580409e02,
    -1.556989798598866e02,
    6.680131188771972e01,
    -1.328068155288572e01,
)
_ACKLAM_C = (
    -7.784894002430293e-03,
    -3.223964580411365e-01,
    -2.400758277161838e00,
    -2.549732539343734e00,
    4.374664141464968e00,
    2.938163982698783e00,
)
_ACKLAM_D = (
    7.784695709041462e-03,
    3.224671290700398e-01,
    2.445134137142996e00,
    3.754408661907416e00,
)
_P_LOW = 0.02425
_P_HIGH = 1 - _P_LOW

# Abramowitz and Stegun formula 7.1.26
_AS_A = (0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429)
_AS_P = 0.3275911


def _tail_quantile(q: float) -> float:
    c, d = _ACKLAM_C, _ACKLAM_D
    return (((((c[0] * q + c[1]) * q + c[2]) * q + c[3]) * q + c[4]) * q + c[5]) / (
        (((d[0] * q + d[1]) * q + d[2]) * q + d[3]) * q + 1
    )


def inverse_normal_cdf(p: float) -> float:
    """Z-score such that P(Z <= z) = p for a standard normal Z.

    Valid for 0 < p < 1. Values outside the open interval return 0.0 with a
    RuntimeWarning rather than raising, so callers must keep p away from the
    bounds themselves.
    """
    if math.isnan(p):
        raise InvalidArgumentError("p must be a number, got NaN")
    if p <= 0 or p >= 1:
        warnings.warn(
            f"inverse_normal_cdf is undefined at p={p}; returning 0.0",
            RuntimeWarning,
            stacklevel=2,
        )
        return 0.0

    if p < _P_LOW:
        return _tail_quantile(math.sqrt(-2 * math.log(p)))

    if p <= _P_HIGH:
        a, b = _ACKLAM_A, _ACKLAM_B
        q = p - 0.5
        r = q * q
        return (((((a[0] * r + a[1]) * r + a[2]) * r + a[3]) * r + a[4]) * r + a[5]) * q / (
            ((((b[0] * r + b[1]) * r + b[2]) * r + b[3]) * r + b[4]) * r + 1
        )

    return -_tail_quantile(math.sqrt(-2 * math.log(1 - p)))


def normal_cdf(x: float) -> float:
    """Standard normal CDF via the Abramowitz-Stegun error function approximation"""
    if math.isnan(x):
        raise InvalidArgumentError("x must be a number, got NaN")

    sign = -1 if x < 0 else 1
    x = abs(x) / math.sqrt(2)

    a1, a2, a3, a4, a5 = _AS_A
    t = 1.0 / (1.0 + _AS_P * x)
    y = 1.0 - (((((a5 * t + a4) * t) + a3) * t + a2) * t + a1) * t * math.exp(-x * x)

    return 0.5 * (1.0 + sign * y)
