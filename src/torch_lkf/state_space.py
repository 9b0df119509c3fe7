"""Linear time-invariant systems in state-space notation.

    x_{k+1} = A x_k + B u_k
    y_k     = C x_k + D u_k

These models are noise free. They are typically used to simulate the system a
:class:`~torch_lkf.KalmanFilter` is built for.
"""

from __future__ import annotations

import torch

from .errors import check_shape


class StateSpaceModel:
    """Fixed linear system in state-space notation.

    Attributes:
        system (torch.Tensor): System matrix ``A``.
            Shape: ``(..., dim_x, dim_x)``
        input_matrix (torch.Tensor): Input matrix ``B``.
            Shape: ``(..., dim_x, dim_u)``
        output_matrix (torch.Tensor): Output matrix ``C``.
            Shape: ``(..., dim_y, dim_x)``
        feedthrough (torch.Tensor): Feedthrough matrix ``D``.
            Shape: ``(..., dim_y, dim_u)``
    """

    def __init__(
        self,
        system: torch.Tensor,
        input_matrix: torch.Tensor,
        output_matrix: torch.Tensor,
        feedthrough: torch.Tensor,
    ) -> None:
        check_shape("system", system)
        dim_x = system.shape[-1]
        check_shape("system", system, dim_x, dim_x)
        check_shape("input_matrix", input_matrix, dim_x)
        check_shape("output_matrix", output_matrix, cols=dim_x)
        check_shape("feedthrough", feedthrough, output_matrix.shape[-2], input_matrix.shape[-1])

        self.system = system
        self.input_matrix = input_matrix
        self.output_matrix = output_matrix
        self.feedthrough = feedthrough

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable."""
        return self.system.shape[-1]

    @property
    def input_dim(self) -> int:
        """Dimension of the input variable."""
        return self.input_matrix.shape[-1]

    @property
    def output_dim(self) -> int:
        """Dimension of the output variable."""
        return self.output_matrix.shape[-2]

    def next_state(self, state: torch.Tensor, inputs: torch.Tensor) -> torch.Tensor:
        """Compute ``A x + B u``."""
        return self.system @ state + self.input_matrix @ inputs

    def next_output(self, state: torch.Tensor, inputs: torch.Tensor) -> torch.Tensor:
        """Compute ``C x + D u``."""
        return self.output_matrix @ state + self.feedthrough @ inputs

    def simulate(self, initial_state: torch.Tensor, inputs: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Roll the system forward over a sequence of inputs.

        At time k, the state moves on with the inputs of time k and the output is computed from this
        new state, matching the predict/update order of :meth:`KalmanFilter.filter`.

        Args:
            initial_state (torch.Tensor): State at time 0.
                Shape: ``(..., dim_x, 1)``
            inputs (torch.Tensor): Inputs over time.
                Shape: ``(T, ..., dim_u, 1)``

        Returns:
            torch.Tensor: States x_1 to x_T.
                Shape: ``(T, ..., dim_x, 1)``
            torch.Tensor: Outputs y_1 to y_T.
                Shape: ``(T, ..., dim_y, 1)``
        """
        states = []
        outputs = []
        state = initial_state
        for inputs_t in inputs:
            state = self.next_state(state, inputs_t)
            states.append(state)
            outputs.append(self.next_output(state, inputs_t))

        return torch.stack(states), torch.stack(outputs)
