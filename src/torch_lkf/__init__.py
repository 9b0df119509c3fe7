"""Torch-LKF: Linear Kalman filtering with known inputs in PyTorch.

torch-lkf implements the classic discrete-time Kalman filter for linear systems
driven by known inputs:

    x_k = A x_{k-1} + B u_k + w_k,   w_k ~ N(0, Q)
    y_k = H x_k + v_k,               v_k ~ N(0, R)

The recursion is split into small collaborating pieces, each with a fixed
measurement model:
- :class:`~torch_lkf.KalmanGainController` computes ``K = P Hᵀ (H P Hᵀ + R)^{-1}``.
- :class:`~torch_lkf.StateCorrector` computes ``x + K (y - H x)``.
- :class:`~torch_lkf.CovarianceCorrector` computes ``(I - K H) P``.

Two filters are built on top of them:
- :class:`~torch_lkf.KalmanFilter` is stateless: estimates are given and returned by each
  call (:meth:`~torch_lkf.KalmanFilter.predict_state`,
  :meth:`~torch_lkf.KalmanFilter.predict_error_covariance`, :meth:`~torch_lkf.KalmanFilter.update`).
- :class:`~torch_lkf.BasicKalmanFilter` keeps its error covariance and runs a full
  predict/correct cycle on each :meth:`~torch_lkf.BasicKalmanFilter.update`.

Numerical notes
---------------
The covariance correction uses the simple form ``(I - K H) P`` by default, which is
fast but may slowly lose symmetry. Run in ``float64`` and/or enable
``joseph_update=True`` if this becomes an issue. A singular innovation covariance
raises :class:`~torch_lkf.NumericalSingularityError`, it is never regularized.

Notes on shapes
---------------
torch-lkf uses column vectors. States, inputs and measures must have shape
``(..., dim, 1)``. Leading dimensions ``...`` are treated as batch dimensions
and may be broadcastable across operations. Matrix dimensions are checked once,
when a model is built.
"""

from .basic import BasicKalmanFilter
from .errors import DimensionMismatchError, InvalidConversionError, KalmanError, NumericalSingularityError
from .kalman_filter import CovarianceCorrector, KalmanFilter, KalmanGainController, StateCorrector
from .state_space import StateSpaceModel

__all__ = [
    "BasicKalmanFilter",
    "CovarianceCorrector",
    "DimensionMismatchError",
    "InvalidConversionError",
    "KalmanError",
    "KalmanFilter",
    "KalmanGainController",
    "NumericalSingularityError",
    "StateCorrector",
    "StateSpaceModel",
]
__version__ = "0.1.0"
