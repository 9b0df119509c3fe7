"""Example estimating a constant value from noisy measures with a stateful filter."""

import argparse

import matplotlib.pyplot as plt
import torch

import torch_lkf


def main(value: float, n: int, measurement_std: float, process_std: float, initial_std: float):
    kf = torch_lkf.BasicKalmanFilter(
        torch.ones(1, 1, dtype=torch.float64),
        torch.zeros(1, 1, dtype=torch.float64),
        torch.full((1, 1), process_std**2, dtype=torch.float64),
        torch.ones(1, 1, dtype=torch.float64),
        torch.full((1, 1), measurement_std**2, dtype=torch.float64),
        initial_covariance=torch.full((1, 1), initial_std**2, dtype=torch.float64),
    )

    print("Parameters")
    print(kf)
    print(f"Data: y(t) = {value} + {measurement_std} * N(0, 1) for {n} points")

    measures = value + measurement_std * torch.randn(n, 1, 1, dtype=torch.float64)
    inputs = torch.zeros(1, 1, dtype=torch.float64)

    state = torch.zeros(1, 1, dtype=torch.float64)
    estimates = torch.empty(n, dtype=torch.float64)
    stds = torch.empty(n, dtype=torch.float64)
    for t in range(n):
        state = kf.update(state, inputs, measures[t])
        estimates[t] = state[0, 0]
        stds[t] = kf.error_covariance[0, 0].sqrt()

    print(f"Final estimate: {estimates[-1]:.4f} +/- {3 * stds[-1]:.4f}")
    print(f"Filtering MSE: {(estimates - value).pow(2).mean()}")
    print(f"Measurement MSE: {(measures[:, 0, 0] - value).pow(2).mean()}")

    plt.figure(figsize=(24, 16))
    plt.plot(torch.full((n,), value), color="k", label="True value")
    plt.plot(measures[:, 0, 0], "o", color="r", markersize=2.0, label="Measures")
    plt.plot(estimates, color="y", label="Filtered estimate")
    plt.fill_between(torch.arange(n), estimates - 3 * stds, estimates + 3 * stds, color="y", alpha=0.5)
    plt.xlabel("t")
    plt.ylabel("y")
    plt.legend(loc="upper right")
    plt.show()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Kalman filter example, estimating a constant from noisy measures")
    parser.add_argument("--value", default=5.0, type=float, help="True constant value")
    parser.add_argument("--n", default=50, type=int, help="Number of measures")
    parser.add_argument("--noise", default=1.0, type=float, help="Measurement noise std")
    parser.add_argument("--process-noise", default=0.1, type=float, help="Process noise std")
    parser.add_argument("--initial-std", default=1.0, type=float, help="Std of the initial estimate")

    args = parser.parse_args()

    main(args.value, args.n, args.noise, args.process_noise, args.initial_std)
