"""
examples/regression_example.py
===============================

Calibration of a probabilistic regression model with calerr.

A Gaussian process predicts a full normal distribution for every input.
The SKCE with a Wasserstein-exponential prediction kernel and a squared
exponential outcome kernel measures how well those predictive
distributions match the observed targets; the closed form for Gaussian
predictions means no sampling is needed.

Requires:
    pip install calerr[examples]

Runtime: ~15 seconds
"""

import os
import sys

# Allow running from the repo root without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import numpy as np
from sklearn.gaussian_process import GaussianProcessRegressor
from sklearn.gaussian_process.kernels import RBF, WhiteKernel as GPWhiteKernel

from calerr import (
    SKCE,
    GaussianPredictions,
    SqExponentialKernel,
    WassersteinExponentialKernel,
    bootstrap_ci,
    calibration_test,
    tensor,
)

# ── 1. Data ────────────────────────────────────────────────────────────────

rng = np.random.default_rng(0)
X = rng.uniform(-3, 3, size=(300, 1))
y = np.sin(X[:, 0]) + rng.normal(0, 0.3, size=300)
X_train, y_train, X_test, y_test = X[:100], y[:100], X[100:], y[100:]

# ── 2. Models ──────────────────────────────────────────────────────────────

fitted = GaussianProcessRegressor(
    kernel=RBF() + GPWhiteKernel(), random_state=0
).fit(X_train, y_train)
noiseless = GaussianProcessRegressor(
    kernel=RBF(), alpha=1e-4, optimizer=None, random_state=0
).fit(X_train, y_train)

kernel = tensor(WassersteinExponentialKernel(), SqExponentialKernel())

print("=" * 65)
print("  calerr — Calibration of Gaussian Predictions")
print("=" * 65)

# ── 3. SKCE and tests ──────────────────────────────────────────────────────

for name, model in (("GP with noise model", fitted), ("GP without noise model", noiseless)):
    mean, std = model.predict(X_test, return_std=True)
    preds = GaussianPredictions(mean, np.maximum(std, 1e-6) ** 2)

    print(f"\n── {name} ──")
    print(f"  SKCE (unbiased) : {bootstrap_ci(SKCE(kernel), preds, y_test, n_bootstrap=200)}")
    print(calibration_test(preds, y_test, kernel=kernel, method="asymptotic"))
    print(calibration_test(preds, y_test, kernel=kernel, method="asymptotic_block", blocksize=2))
