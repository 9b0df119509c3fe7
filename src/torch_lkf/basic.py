"""Kalman filter keeping its own error covariance between calls.

This is the variant meant for control loops: each call to
:meth:`BasicKalmanFilter.update` runs a full predict/correct cycle.
"""

from __future__ import annotations

import logging
from typing import overload

import torch

from .errors import check_shape
from .kalman_filter import KalmanFilter

logger = logging.getLogger(__name__)


class BasicKalmanFilter:
    """Stateful linear Kalman filter.

    The filter owns the running error covariance ``P``. The state estimate itself is given by
    the caller and the corrected one is returned, it is never stored.

    Not thread-safe: concurrent calls to `update` on the same instance must be serialized by the caller.

    Attributes:
        model (KalmanFilter): Underlying stateless filter (fixed matrices and sub-computations).
    """

    def __init__(
        self,
        system: torch.Tensor,
        input_matrix: torch.Tensor,
        process_noise: torch.Tensor,
        measurement_matrix: torch.Tensor,
        measurement_noise: torch.Tensor,
        *,
        initial_covariance: torch.Tensor | None = None,
        joseph_update=False,
    ) -> None:
        self.model = KalmanFilter(
            system, input_matrix, process_noise, measurement_matrix, measurement_noise, joseph_update=joseph_update
        )

        if initial_covariance is None:
            logger.warning("No initial covariance given to BasicKalmanFilter: starting from a zero error covariance")
            initial_covariance = torch.zeros_like(system)

        self.reset(initial_covariance)

    @property
    def error_covariance(self) -> torch.Tensor:
        """Current (corrected) error covariance ``P``.

        Shape: ``(..., dim_x, dim_x)``
        """
        return self._error_covariance

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable."""
        return self.model.state_dim

    @property
    def input_dim(self) -> int:
        """Dimension of the input variable."""
        return self.model.input_dim

    @property
    def measure_dim(self) -> int:
        """Dimension of the measured variable."""
        return self.model.measure_dim

    def reset(self, error_covariance: torch.Tensor) -> None:
        """Seed the filter with a new error covariance.

        Args:
            error_covariance (torch.Tensor): New error covariance.
                Shape: ``(..., dim_x, dim_x)``
        """
        check_shape("error_covariance", error_covariance, self.state_dim, self.state_dim)
        self._error_covariance = error_covariance.to(self.model.dtype).to(self.model.device)

    @overload
    def to(self, dtype: torch.dtype) -> BasicKalmanFilter: ...

    @overload
    def to(self, device: torch.device) -> BasicKalmanFilter: ...

    def to(self, fmt):
        """Convert the filter (and its current error covariance) to a specific device or dtype.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the filter to.

        Returns:
            BasicKalmanFilter: The filter with the right format
        """
        model = self.model.to(fmt)
        return BasicKalmanFilter(
            model.system,
            model.input_matrix,
            model.process_noise,
            model.measurement_matrix,
            model.measurement_noise,
            initial_covariance=self._error_covariance.to(fmt),
            joseph_update=model.joseph_update,
        )

    def update(self, state: torch.Tensor, inputs: torch.Tensor, outputs: torch.Tensor) -> torch.Tensor:
        """Run one predict/correct cycle.

        The state and the stored error covariance are predicted with the inputs, then corrected
        with the measured outputs. The corrected covariance replaces the stored one.

        Args:
            state (torch.Tensor): Previous state estimate.
                Shape: ``(..., dim_x, 1)``
            inputs (torch.Tensor): Known inputs of this step.
                Shape: ``(..., dim_u, 1)``
            outputs (torch.Tensor): Measured outputs of this step.
                Shape: ``(..., dim_z, 1)``

        Returns:
            torch.Tensor: Corrected state estimate.
                Shape: ``(..., dim_x, 1)``

        Raises:
            NumericalSingularityError: If the innovation covariance is singular. The stored
                error covariance is left unchanged.
        """
        predicted_state = self.model.predict_state(state, inputs)
        predicted_covariance = self.model.predict_error_covariance(self._error_covariance)

        kalman_gains = self.model.kalman_gains.next_gains(predicted_covariance)
        new_state = self.model.state_transfer.eval(kalman_gains, predicted_state, outputs)
        self._error_covariance = self.model.error_covariance_transfer.eval(kalman_gains, predicted_covariance)
        return new_state

    def __repr__(self) -> str:
        return f"Basic {self.model!r}"
