import numpy as np
import pytest
import torch

from torch_lkf import InvalidConversionError
from torch_lkf.numeric import covariance, covariance_matrix, jacobian


def test_jacobian_of_linear_map():
    matrix = torch.randn(3, 2, dtype=torch.float64)
    point = torch.randn(2, 1, dtype=torch.float64)

    result = jacobian(lambda x: matrix @ x, point)

    assert result.shape == (3, 2)
    assert torch.allclose(result, matrix, atol=1e-6)


def test_jacobian_of_elementwise_function_is_diagonal():
    point = torch.randn(4, 1, dtype=torch.float64)

    result = jacobian(torch.sin, point)

    assert torch.allclose(result, torch.diag(torch.cos(point[:, 0])), atol=1e-6)


def test_jacobian_epsilon_is_configurable():
    point = torch.tensor([[1.0], [-2.0]], dtype=torch.float64)

    # Forward differences of x^2: 2x + epsilon
    result = jacobian(lambda x: x**2, point, epsilon=1e-3)

    assert torch.allclose(result, torch.diag(2 * point[:, 0] + 1e-3), atol=1e-9)


def test_jacobian_linearizes_a_nonlinear_system():
    # Pendulum (theta, omega) discretized with dt
    dt = 0.1

    def step(x: torch.Tensor) -> torch.Tensor:
        return torch.cat([x[:1] + dt * x[1:], x[1:] - dt * torch.sin(x[:1])])

    point = torch.tensor([[0.3], [0.5]], dtype=torch.float64)
    expected = torch.tensor([[1.0, dt], [-dt * torch.cos(point[0, 0]).item(), 1.0]], dtype=torch.float64)

    assert torch.allclose(jacobian(step, point), expected, atol=1e-6)


def test_jacobian_requires_floating_point():
    with pytest.raises(InvalidConversionError):
        jacobian(lambda x: x, torch.ones(2, 1, dtype=torch.int64))


def test_covariance():
    assert covariance([1.0, 2.0, 3.0, 4.0], [2.0, 4.0, 6.0, 8.0]).item() == pytest.approx(2.5)
    assert covariance([1.0, 2.0, 3.0, 4.0], [4.0, 3.0, 2.0, 1.0]).item() == pytest.approx(-1.25)
    assert covariance([5.0, 5.0, 5.0], [1.0, 2.0, 3.0]).item() == pytest.approx(0.0)


def test_covariance_truncates_to_shortest():
    assert covariance([1.0, 2.0, 3.0], [1.0, 2.0, 3.0, 100.0]).item() == pytest.approx(2 / 3)
    assert covariance(torch.tensor([1.0, 2.0, 3.0, -7.0]), [1, 2, 3]).item() == pytest.approx(2 / 3)


@pytest.mark.parametrize(
    ("a", "b"),
    [
        ([], [1.0, 2.0]),
        ([1.0, 2.0], []),
        ([[1.0, 2.0]], [1.0, 2.0]),
        (["a", "b"], [1.0, 2.0]),
    ],
)
def test_covariance_invalid_samples(a, b):
    with pytest.raises(InvalidConversionError):
        covariance(a, b)


def test_covariance_matrix_matches_numpy():
    samples = torch.randn(100, 3, dtype=torch.float64) @ torch.randn(3, 3, dtype=torch.float64)

    result = covariance_matrix(samples)

    assert result.shape == (3, 3)
    assert np.allclose(result.numpy(), np.cov(samples.numpy().T, bias=True))
    assert torch.allclose(result[0, 2], covariance(samples[:, 0], samples[:, 2]))


def test_covariance_matrix_invalid_samples():
    with pytest.raises(InvalidConversionError):
        covariance_matrix([1.0, 2.0])

    with pytest.raises(InvalidConversionError):
        covariance_matrix([[1.0, 2.0], [3.0]])
