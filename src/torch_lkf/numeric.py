"""Numeric helpers used to build filters.

- :func:`jacobian` linearizes a function around a point with forward finite differences.
- :func:`covariance` and :func:`covariance_matrix` estimate (population) covariances from
  recorded samples, e.g. to fill the measurement noise ``R`` from sensor recordings.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

import torch

from .errors import InvalidConversionError


def jacobian(
    function: Callable[[torch.Tensor], torch.Tensor], point: torch.Tensor, *, epsilon: float | None = None
) -> torch.Tensor:
    """Estimate the jacobian of a function with forward finite differences.

    Column i is ``(f(x + eps * e_i) - f(x)) / eps``.

    Args:
        function (Callable[[torch.Tensor], torch.Tensor]): Function to differentiate.
            It maps a column vector of shape ``(N, 1)`` to a column vector of shape ``(M, 1)``.
        point (torch.Tensor): Point where the jacobian is evaluated.
            Shape: ``(N, 1)``
        epsilon (float | None): Step of the finite differences.
            Default: ``sqrt(eps)`` of the point dtype.

    Returns:
        torch.Tensor: Jacobian matrix.
            Shape: ``(M, N)``
    """
    if not point.is_floating_point():
        raise InvalidConversionError(f"Cannot differentiate at a point of dtype {point.dtype}")

    if epsilon is None:
        epsilon = torch.finfo(point.dtype).eps ** 0.5

    base = function(point)
    steps = torch.eye(point.shape[-2], dtype=point.dtype, device=point.device) * epsilon

    columns = [(function(point + steps[:, i : i + 1]) - base) / epsilon for i in range(point.shape[-2])]
    return torch.cat(columns, dim=-1)


def _as_samples(samples: Sequence[float] | torch.Tensor, dtype: torch.dtype, ndim: int) -> torch.Tensor:
    try:
        tensor = torch.as_tensor(samples, dtype=dtype)
    except (TypeError, ValueError, RuntimeError) as err:
        raise InvalidConversionError(f"Cannot convert samples into a {dtype} tensor") from err

    if tensor.ndim != ndim:
        raise InvalidConversionError(f"Expected {ndim}D samples, got shape {tuple(tensor.shape)}")
    if tensor.shape[0] == 0:
        raise InvalidConversionError("Cannot estimate a covariance without samples")

    return tensor


def covariance(
    a: Sequence[float] | torch.Tensor, b: Sequence[float] | torch.Tensor, *, dtype=torch.float64
) -> torch.Tensor:
    """Population covariance of two sequences of samples.

    Only the first ``min(len(a), len(b))`` samples are used.

    Args:
        a (Sequence[float] | torch.Tensor): First samples.
            Shape: ``(T_a,)``
        b (Sequence[float] | torch.Tensor): Second samples.
            Shape: ``(T_b,)``
        dtype (torch.dtype): Dtype of the computation.
            Default: float64

    Returns:
        torch.Tensor: Scalar covariance ``mean((a - mean(a)) * (b - mean(b)))``.

    Raises:
        InvalidConversionError: If samples are not 1D numbers, or are empty.
    """
    a_ = _as_samples(a, dtype, 1)
    b_ = _as_samples(b, dtype, 1)
    length = min(a_.shape[0], b_.shape[0])
    a_, b_ = a_[:length], b_[:length]

    return ((a_ - a_.mean()) * (b_ - b_.mean())).mean()


def covariance_matrix(samples: Sequence[Sequence[float]] | torch.Tensor, *, dtype=torch.float64) -> torch.Tensor:
    """Population covariance matrix of multivariate samples.

    Entry (i, j) is ``covariance(samples[:, i], samples[:, j])``.

    Args:
        samples (Sequence[Sequence[float]] | torch.Tensor): Samples over time.
            Shape: ``(T, dim)``
        dtype (torch.dtype): Dtype of the computation.
            Default: float64

    Returns:
        torch.Tensor: Covariance matrix.
            Shape: ``(dim, dim)``

    Raises:
        InvalidConversionError: If samples are not 2D numbers, or are empty.
    """
    samples_ = _as_samples(samples, dtype, 2)
    centered = samples_ - samples_.mean(dim=0)
    return centered.mT @ centered / samples_.shape[0]
