"""Errors raised by torch-lkf.

All errors are raised synchronously to the caller. Nothing is retried or masked.
"""

from __future__ import annotations

import torch


class KalmanError(Exception):
    """Base class of all torch-lkf errors."""


class DimensionMismatchError(KalmanError, ValueError):
    """A matrix does not match the (state, input, measure) dimensions of its model."""


class NumericalSingularityError(KalmanError, RuntimeError):
    """The innovation covariance ``H P Hᵀ + R`` cannot be inverted."""


class InvalidConversionError(KalmanError, ValueError):
    """Samples cannot be converted into a non-empty floating tensor."""


def check_shape(name: str, matrix: torch.Tensor, rows: int | None = None, cols: int | None = None) -> None:
    """Check the trailing (matrix) dimensions of a tensor.

    Leading batch dimensions are not checked, they only have to be broadcastable.

    Args:
        name (str): Name of the matrix, used in the error message.
        matrix (torch.Tensor): Matrix to check.
            Shape: ``(..., rows, cols)``
        rows (int | None): Expected number of rows. Any number if None.
        cols (int | None): Expected number of columns. Any number if None.

    Raises:
        DimensionMismatchError: If the matrix is not at least 2D or its trailing shape differs.
    """
    if (
        matrix.ndim < 2  # noqa: PLR2004
        or (rows is not None and matrix.shape[-2] != rows)
        or (cols is not None and matrix.shape[-1] != cols)
    ):
        raise DimensionMismatchError(
            f"{name} should have shape (..., {'n' if rows is None else rows}, {'m' if cols is None else cols}),"
            f" got {tuple(matrix.shape)}"
        )
