from __future__ import annotations

import logging
from typing import overload

import torch
import torch.linalg

from .errors import NumericalSingularityError, check_shape

# Note on runtime:
# The gain is computed with an explicit inverse of the innovation covariance (dim_z x dim_z).
# dim_z is usually small, and inv_ex reports singular matrices through `info` instead of
# returning garbage, which lets us raise a dedicated error.

logger = logging.getLogger(__name__)


class KalmanGainController:
    """Compute Kalman gains for a fixed measurement model.

    For a predicted error covariance ``P``, the gain is:

        K = P Hᵀ (H P Hᵀ + R)^{-1}

    ``Hᵀ`` is computed once at construction.

    Attributes:
        measurement_matrix (torch.Tensor): Measurement matrix ``H``.
            Shape: ``(..., dim_z, dim_x)``
        measurement_noise (torch.Tensor): Measurement noise covariance ``R``.
            Shape: ``(..., dim_z, dim_z)``
        measurement_transpose (torch.Tensor): Cached ``Hᵀ``.
            Shape: ``(..., dim_x, dim_z)``
    """

    def __init__(self, measurement_matrix: torch.Tensor, measurement_noise: torch.Tensor) -> None:
        check_shape("measurement_matrix", measurement_matrix)
        dim_z = measurement_matrix.shape[-2]
        check_shape("measurement_noise", measurement_noise, dim_z, dim_z)
        self.measurement_matrix = measurement_matrix
        self.measurement_noise = measurement_noise
        self.measurement_transpose = measurement_matrix.mT

    def innovation_covariance(self, error_covariance: torch.Tensor) -> torch.Tensor:
        """Covariance of the innovation: ``S = H P Hᵀ + R``."""
        return self.measurement_matrix @ error_covariance @ self.measurement_transpose + self.measurement_noise

    def next_gains(self, error_covariance: torch.Tensor) -> torch.Tensor:
        """Compute the Kalman gain from a predicted error covariance.

        Args:
            error_covariance (torch.Tensor): Predicted error covariance ``P``.
                Shape: ``(..., dim_x, dim_x)``

        Returns:
            torch.Tensor: Kalman gain ``K``.
                Shape: ``(..., dim_x, dim_z)``

        Raises:
            NumericalSingularityError: If ``H P Hᵀ + R`` is singular.
        """
        precision, info = torch.linalg.inv_ex(self.innovation_covariance(error_covariance))
        if info.any():
            logger.debug("Singular innovation covariance (LAPACK info: %s)", info.tolist())
            raise NumericalSingularityError("The innovation covariance H P H^T + R is singular and cannot be inverted")

        return error_covariance @ self.measurement_transpose @ precision


class StateCorrector:
    """Correct a predicted state with a measure.

        x' = x + K (y - H x)

    Attributes:
        measurement_matrix (torch.Tensor): Measurement matrix ``H``.
            Shape: ``(..., dim_z, dim_x)``
    """

    def __init__(self, measurement_matrix: torch.Tensor) -> None:
        check_shape("measurement_matrix", measurement_matrix)
        self.measurement_matrix = measurement_matrix

    def innovation(self, state: torch.Tensor, outputs: torch.Tensor) -> torch.Tensor:
        """Residual between the measure and the predicted measure: ``y - H x``."""
        return outputs - self.measurement_matrix @ state

    def eval(self, kalman_gains: torch.Tensor, state: torch.Tensor, outputs: torch.Tensor) -> torch.Tensor:
        """Correct the predicted state.

        Args:
            kalman_gains (torch.Tensor): Kalman gain ``K``.
                Shape: ``(..., dim_x, dim_z)``
            state (torch.Tensor): Predicted state ``x``.
                Shape: ``(..., dim_x, 1)``
            outputs (torch.Tensor): Measured outputs ``y``.
                Shape: ``(..., dim_z, 1)``

        Returns:
            torch.Tensor: Corrected state.
                Shape: ``(..., dim_x, 1)``
        """
        return state + kalman_gains @ self.innovation(state, outputs)


class CovarianceCorrector:
    """Correct a predicted error covariance with a Kalman gain.

    The default update is the simple form:

        P' = (I - K H) P

    With ``joseph_update=True``, the Joseph form is used instead. It is slower but keeps
    ``P'`` symmetric positive semi-definite under rounding errors:

        P' = (I - K H) P (I - K H)ᵀ + K R Kᵀ

    Attributes:
        measurement_matrix (torch.Tensor): Measurement matrix ``H``.
            Shape: ``(..., dim_z, dim_x)``
        measurement_noise (torch.Tensor | None): Measurement noise covariance ``R``. Only used by the Joseph form.
            Shape: ``(..., dim_z, dim_z)``
        identity (torch.Tensor): Identity matrix, computed once.
            Shape: ``(dim_x, dim_x)``
        joseph_update (bool): Use the Joseph form.
    """

    def __init__(
        self,
        measurement_matrix: torch.Tensor,
        *,
        measurement_noise: torch.Tensor | None = None,
        joseph_update=False,
    ) -> None:
        check_shape("measurement_matrix", measurement_matrix)
        dim_z, dim_x = measurement_matrix.shape[-2:]
        if joseph_update:
            if measurement_noise is None:
                raise ValueError("The Joseph form requires the measurement noise covariance")
            check_shape("measurement_noise", measurement_noise, dim_z, dim_z)

        self.measurement_matrix = measurement_matrix
        self.measurement_noise = measurement_noise
        self.joseph_update = joseph_update
        self.identity = torch.eye(dim_x, dtype=measurement_matrix.dtype, device=measurement_matrix.device)

    def eval(self, kalman_gains: torch.Tensor, error_covariance: torch.Tensor) -> torch.Tensor:
        """Correct the predicted error covariance.

        Args:
            kalman_gains (torch.Tensor): Kalman gain ``K``.
                Shape: ``(..., dim_x, dim_z)``
            error_covariance (torch.Tensor): Predicted error covariance ``P``.
                Shape: ``(..., dim_x, dim_x)``

        Returns:
            torch.Tensor: Corrected error covariance.
                Shape: ``(..., dim_x, dim_x)``
        """
        factor = self.identity - kalman_gains @ self.measurement_matrix
        if self.joseph_update and self.measurement_noise is not None:
            return factor @ error_covariance @ factor.mT + kalman_gains @ self.measurement_noise @ kalman_gains.mT

        return factor @ error_covariance


class KalmanFilter:
    """Linear Kalman filter with caller-managed state and error covariance.

    It estimates the latent state of a linear system with inputs:

        x_k = A x_{k-1} + B u_k + w_k,   w_k ~ N(0, Q)
        y_k = H x_k + v_k,               v_k ~ N(0, R)

    where:
    - ``x_k`` is the hidden state (dimension ``dim_x``),
    - ``u_k`` is the known input (dimension ``dim_u``),
    - ``y_k`` is the measure (dimension ``dim_z``).

    The filter does not hold any estimate: states and covariances are given to, and returned by,
    each call. See :class:`~torch_lkf.BasicKalmanFilter` for a filter that keeps its error covariance.

    Shape conventions:
    - Vectors are **column vectors** with shape ``(..., dim, 1)``.
    - Leading ``...`` batch dimensions may be broadcastable.
    - Only the trailing matrix dimensions are checked, at construction.

    Attributes:
        system (torch.Tensor): System (transition) matrix ``A``.
            Shape: ``(..., dim_x, dim_x)``
        input_matrix (torch.Tensor): Input matrix ``B``.
            Shape: ``(..., dim_x, dim_u)``
        process_noise (torch.Tensor): Process noise covariance ``Q``.
            Shape: ``(..., dim_x, dim_x)``
        measurement_matrix (torch.Tensor): Measurement matrix ``H``.
            Shape: ``(..., dim_z, dim_x)``
        measurement_noise (torch.Tensor): Measurement noise covariance ``R``.
            Shape: ``(..., dim_z, dim_z)``
        kalman_gains (KalmanGainController)
        state_transfer (StateCorrector)
        error_covariance_transfer (CovarianceCorrector)
    """

    def __init__(
        self,
        system: torch.Tensor,
        input_matrix: torch.Tensor,
        process_noise: torch.Tensor,
        measurement_matrix: torch.Tensor,
        measurement_noise: torch.Tensor,
        *,
        joseph_update=False,
    ) -> None:
        check_shape("system", system)
        check_shape("measurement_matrix", measurement_matrix)
        dim_x = system.shape[-1]
        dim_z = measurement_matrix.shape[-2]
        check_shape("system", system, dim_x, dim_x)
        check_shape("input_matrix", input_matrix, dim_x)
        check_shape("process_noise", process_noise, dim_x, dim_x)
        check_shape("measurement_matrix", measurement_matrix, dim_z, dim_x)
        check_shape("measurement_noise", measurement_noise, dim_z, dim_z)

        self.system = system
        self.input_matrix = input_matrix
        self.process_noise = process_noise
        self.measurement_matrix = measurement_matrix
        self.measurement_noise = measurement_noise
        self.joseph_update = joseph_update

        self.kalman_gains = KalmanGainController(measurement_matrix, measurement_noise)
        self.state_transfer = StateCorrector(measurement_matrix)
        self.error_covariance_transfer = CovarianceCorrector(
            measurement_matrix, measurement_noise=measurement_noise, joseph_update=joseph_update
        )

        logger.debug(
            "Built Kalman filter (state: %d, input: %d, measure: %d, joseph: %s)",
            self.state_dim,
            self.input_dim,
            self.measure_dim,
            joseph_update,
        )

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable."""
        return self.system.shape[-1]

    @property
    def input_dim(self) -> int:
        """Dimension of the input variable."""
        return self.input_matrix.shape[-1]

    @property
    def measure_dim(self) -> int:
        """Dimension of the measured variable."""
        return self.measurement_matrix.shape[-2]

    @property
    def device(self) -> torch.device:
        """Device of the Kalman filter."""
        return self.system.device

    @property
    def dtype(self) -> torch.dtype:
        """Dtype of the Kalman filter."""
        return self.system.dtype

    @overload
    def to(self, dtype: torch.dtype) -> KalmanFilter: ...

    @overload
    def to(self, device: torch.device) -> KalmanFilter: ...

    def to(self, fmt):
        """Convert a Kalman filter to a specific device or dtype.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the filter to.

        Returns:
            KalmanFilter: The filter with the right format
        """
        return KalmanFilter(
            self.system.to(fmt),
            self.input_matrix.to(fmt),
            self.process_noise.to(fmt),
            self.measurement_matrix.to(fmt),
            self.measurement_noise.to(fmt),
            joseph_update=self.joseph_update,
        )

    def predict_state(self, state: torch.Tensor, inputs: torch.Tensor) -> torch.Tensor:
        """Predict the next state: ``A x + B u``.

        Args:
            state (torch.Tensor): Current state estimate.
                Shape: ``(..., dim_x, 1)``
            inputs (torch.Tensor): Known inputs.
                Shape: ``(..., dim_u, 1)``

        Returns:
            torch.Tensor: Predicted state.
                Shape: ``(..., dim_x, 1)``
        """
        return self.system @ state + self.input_matrix @ inputs

    def predict_error_covariance(self, error_covariance: torch.Tensor) -> torch.Tensor:
        """Predict the next error covariance: ``A P Aᵀ + Q``.

        Args:
            error_covariance (torch.Tensor): Current error covariance.
                Shape: ``(..., dim_x, dim_x)``

        Returns:
            torch.Tensor: Predicted error covariance.
                Shape: ``(..., dim_x, dim_x)``
        """
        return self.system @ error_covariance @ self.system.mT + self.process_noise

    def update(
        self, error_covariance: torch.Tensor, state: torch.Tensor, outputs: torch.Tensor
    ) -> tuple[torch.Tensor, torch.Tensor]:
        """Correct a predicted state and error covariance with a measure.

        The caller is responsible for the prediction step: ``error_covariance`` and ``state`` should
        come from `predict_error_covariance` and `predict_state`.

        `update` follows three steps:
        1. Kalman gain: K = P Hᵀ (H P Hᵀ + R)^{-1}
        2. State correction: x' = x + K (y - H x)
        3. Covariance correction: P' = (I - K H) P

        Args:
            error_covariance (torch.Tensor): Predicted error covariance.
                Shape: ``(..., dim_x, dim_x)``
            state (torch.Tensor): Predicted state.
                Shape: ``(..., dim_x, 1)``
            outputs (torch.Tensor): Measured outputs.
                Shape: ``(..., dim_z, 1)``

        Returns:
            torch.Tensor: Corrected state.
                Shape: ``(..., dim_x, 1)``
            torch.Tensor: Corrected error covariance.
                Shape: ``(..., dim_x, dim_x)``

        Raises:
            NumericalSingularityError: If the innovation covariance is singular.
        """
        kalman_gains = self.kalman_gains.next_gains(error_covariance)
        new_state = self.state_transfer.eval(kalman_gains, state, outputs)
        new_error_covariance = self.error_covariance_transfer.eval(kalman_gains, error_covariance)
        return new_state, new_error_covariance

    def filter(
        self,
        state: torch.Tensor,
        error_covariance: torch.Tensor,
        inputs: torch.Tensor,
        measures: torch.Tensor,
        return_all=False,
    ) -> tuple[torch.Tensor, torch.Tensor]:
        """Run the predict/update loop over a sequence of inputs and measures.

        At each time step, the state and covariance are predicted with the inputs of this step
        and then corrected with the measures of this step.

        Args:
            state (torch.Tensor): Initial state estimate.
                Shape: ``(..., dim_x, 1)``
            error_covariance (torch.Tensor): Initial error covariance.
                Shape: ``(..., dim_x, dim_x)``
            inputs (torch.Tensor): Sequence of inputs over time.
                Shape: ``(T, ..., dim_u, 1)``
            measures (torch.Tensor): Sequence of measures over time.
                Shape: ``(T, ..., dim_z, 1)``
            return_all (bool): If True, return the corrected estimates at every time step, stacked
                along a leading time dimension. Otherwise, only the last ones are returned.
                Default: False

        Returns:
            torch.Tensor: Corrected state(s).
                Shape: ``([T, ]..., dim_x, 1)``
            torch.Tensor: Corrected error covariance(s).
                Shape: ``([T, ]..., dim_x, dim_x)``
        """
        if inputs.shape[0] != measures.shape[0]:
            raise ValueError(f"Got {inputs.shape[0]} inputs for {measures.shape[0]} measures")

        states = []
        error_covariances = []

        for inputs_t, measures_t in zip(inputs, measures):
            state = self.predict_state(state, inputs_t)
            error_covariance = self.predict_error_covariance(error_covariance)
            state, error_covariance = self.update(error_covariance, state, measures_t)

            if return_all:
                states.append(state)
                error_covariances.append(error_covariance)

        if return_all:
            return torch.stack(states), torch.stack(error_covariances)

        return state, error_covariance

    def __repr__(self) -> str:
        """Convert the Kalman filter model into a readable string."""
        header = (
            f"Kalman Filter (State dimension: {self.state_dim}, Input dimension: {self.input_dim}, "
            f"Measure dimension: {self.measure_dim})"
        )
        blocks = [
            ("System: A = ", self.system),
            ("Input: B = ", self.input_matrix),
            ("Process noise: Q = ", self.process_noise),
            ("Measurement: H = ", self.measurement_matrix),
            ("Measurement noise: R = ", self.measurement_noise),
        ]
        lines = []
        for name, matrix in blocks:
            matrix_repr = _format_matrix(matrix).split("\n")
            lines.append(name + matrix_repr[0])
            lines.extend(" " * len(name) + line for line in matrix_repr[1:])

        n_char = max(len(line) for line in [header, *lines])
        return ("\n" + "-" * n_char + "\n").join([header, "\n".join(lines)])


def _format_matrix(matrix: torch.Tensor) -> str:
    # Batched models are summarized by their shape
    if matrix.ndim > 2:  # noqa: PLR2004
        return f"<batched matrices of shape {tuple(matrix.shape)}>"

    rows = ["[" + ", ".join(f"{value:.2f}" for value in row) + "]" for row in matrix.tolist()]
    return "\n".join(rows)
