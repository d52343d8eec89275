"""
examples/classification_example.py
====================================

Calibration analysis of multi-class classifiers with calerr.

  "The model reports 90% confidence. Is it right 90% of the time, and is
   the gap I see real or just sampling noise?"

Fits two classifiers on the wine data, then reports ECE with two binning
schemes, the SKCE, bootstrap intervals and calibration tests for both.

Requires:
    pip install calerr[examples]

Runtime: ~20 seconds
"""

import os
import sys

# Allow running from the repo root without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sklearn.datasets import load_wine
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.model_selection import train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

# ── calerr imports ────────────────────────────────────────────────────────────
from calerr import (
    ECE,
    SKCE,
    EqualMass,
    EqualSize,
    ExponentialKernel,
    TotalVariation,
    WhiteKernel,
    calibration_test,
    consistency_bars,
    summary,
    tensor,
)


# ─────────────────────────────────────────────────────────────────────────────
# Setup
# ─────────────────────────────────────────────────────────────────────────────

X, y = load_wine(return_X_y=True)
X_train, X_test, y_train, y_test = train_test_split(
    X, y, test_size=0.5, random_state=0, stratify=y
)

print("=" * 65)
print("  calerr — Calibration of Multi-class Classifiers")
print("=" * 65)

models = {
    "LogisticRegression": Pipeline([
        ("scaler", StandardScaler()),
        ("clf", LogisticRegression(max_iter=2000)),
    ]),
    "RandomForest": RandomForestClassifier(n_estimators=200, random_state=0),
}

kernel = tensor(ExponentialKernel(metric=TotalVariation()), WhiteKernel())


# ─────────────────────────────────────────────────────────────────────────────
# Estimates and tests
# ─────────────────────────────────────────────────────────────────────────────

for name, model in models.items():
    probs = model.fit(X_train, y_train).predict_proba(X_test)

    print(f"\n── {name} ──")
    summary(
        {
            "ECE (size, 10)": ECE(EqualSize(10)),
            "ECE (mass, 10)": ECE(EqualMass(10)),
            "SKCE (unbiased)": SKCE(kernel),
        },
        probs, y_test, n_bootstrap=500,
    )

    for method in ("asymptotic", "asymptotic_block", "distribution_free"):
        print(calibration_test(probs, y_test, kernel=kernel, method=method))

    print(calibration_test(
        probs, y_test, method="consistency",
        estimator=ECE(EqualMass(5)), bootstrap_iters=1000, rng=0,
    ))


# ─────────────────────────────────────────────────────────────────────────────
# Reliability diagram data for the top-class confidence
# ─────────────────────────────────────────────────────────────────────────────

probs = models["RandomForest"].predict_proba(X_test)
confidence = probs.max(axis=1)
correct = probs.argmax(axis=1) == y_test

bars = consistency_bars(confidence, correct, binning=EqualMass(5), rng=0)
print("\n── RandomForest reliability (top-class confidence) ──")
print(f"  {'conf':>6}  {'freq':>6}  {'95% consistency bar':>22}  {'n':>4}")
for c, f, lo, hi, n in zip(bars.confidence, bars.frequency, bars.lower, bars.upper, bars.count):
    print(f"  {c:6.3f}  {f:6.3f}  [{lo:8.3f}, {hi:8.3f}]      {n:4d}")
