"""
Test suite for calerr: samples, distances, kernels, binning and ECE.

Run with: pytest tests/ -v
"""

import warnings

import numpy as np
import pandas as pd
import pytest

from calerr.calibration.binning import EqualMass, EqualSize, compute_bins, get_binning
from calerr.calibration.ece import ECE, compute_ece, compute_mce, reliability_curve
from calerr.calibration.reliability import consistency_bars
from calerr.core.distributions import GaussianPredictions, MvNormal, Normal
from calerr.core.errors import (
    CalerrError,
    DimensionMismatchError,
    InsufficientSamplesError,
    InvalidParameterError,
    SparseBinsWarning,
)
from calerr.core.sample import CategoricalSample, GaussianSample, make_sample
from calerr.kernels.distances import (
    Cityblock,
    Euclidean,
    TotalVariation,
    Wasserstein,
    get_distance,
)
from calerr.kernels.kernels import (
    ExponentialKernel,
    Matern32Kernel,
    Matern52Kernel,
    SqExponentialKernel,
    TensorProductKernel,
    WhiteKernel,
    get_kernel,
    tensor,
)


# -----------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------

@pytest.fixture
def scenario():
    """Four binary confidences: two bins of two with accuracies 1.0 and 0.5."""
    return np.array([0.9, 0.9, 0.6, 0.6]), np.array([1, 1, 1, 0])


@pytest.fixture
def multiclass():
    rng = np.random.default_rng(0)
    probs = rng.dirichlet(np.ones(4), size=300)
    labels = rng.integers(0, 4, size=300)
    return probs, labels


@pytest.fixture
def calibrated_binary():
    rng = np.random.default_rng(1)
    conf = rng.uniform(0, 1, size=2000)
    outcomes = rng.random(2000) < conf
    return conf, outcomes


# -----------------------------------------------------------------------
# Samples
# -----------------------------------------------------------------------

class TestMakeSample:
    def test_binary_confidences_are_lifted(self, scenario):
        conf, outcomes = scenario
        s = make_sample(conf, outcomes)
        assert isinstance(s, CategoricalSample)
        assert s.binary
        assert s.probs.shape == (4, 2)
        np.testing.assert_allclose(s.probs[:, 1], conf)
        np.testing.assert_array_equal(s.labels, outcomes)

    def test_probability_vectors(self, multiclass):
        probs, labels = multiclass
        s = make_sample(probs, labels)
        assert not s.binary
        assert s.n_classes == 4
        np.testing.assert_allclose(s.confidence, probs.max(axis=1))

    def test_boolean_outcomes(self):
        s = make_sample([0.2, 0.7], [False, True])
        np.testing.assert_array_equal(s.labels, [0, 1])

    def test_length_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError, match="3 predictions but 2 outcomes"):
            make_sample([0.1, 0.2, 0.3], [0, 1])

    def test_ragged_vectors_raise(self):
        with pytest.raises(DimensionMismatchError, match="inconsistent"):
            make_sample([[0.5, 0.5], [1.0]], [0, 0])

    def test_off_simplex_raises(self):
        with pytest.raises(InvalidParameterError, match="probability vector"):
            make_sample([[0.5, 0.6], [0.5, 0.5]], [0, 1])

    def test_label_out_of_range_raises(self):
        with pytest.raises(InvalidParameterError, match="0..1"):
            make_sample([[0.5, 0.5], [0.5, 0.5]], [0, 2])

    def test_confidence_out_of_range_raises(self):
        with pytest.raises(InvalidParameterError, match=r"\[0, 1\]"):
            make_sample([0.5, 1.2], [0, 1])

    def test_nan_raises(self):
        with pytest.raises(InvalidParameterError, match="NaN"):
            make_sample([0.5, np.nan], [0, 1])

    def test_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            make_sample([0.1, 0.2], [0])
        assert issubclass(InvalidParameterError, CalerrError)

    def test_owner_in_message(self):
        with pytest.raises(DimensionMismatchError, match="my_estimator"):
            make_sample([0.1, 0.2], [0], owner="my_estimator")

    def test_gaussian_predictions(self):
        s = make_sample([Normal(0.0, 1.0), Normal(1.0, 2.0)], [0.3, 0.8])
        assert isinstance(s, GaussianSample)
        assert len(s) == 2
        assert s.dim == 1
        assert s.targets.shape == (2, 1)

    def test_gaussian_dimension_mismatch(self):
        preds = [MvNormal([0.0, 0.0], np.eye(2))] * 3
        with pytest.raises(DimensionMismatchError):
            make_sample(preds, np.zeros((3, 3)))

    def test_resample_outcomes_is_reproducible(self, multiclass):
        s = make_sample(*multiclass)
        a = s.resample_outcomes(np.random.default_rng(5))
        b = s.resample_outcomes(np.random.default_rng(5))
        np.testing.assert_array_equal(a.labels, b.labels)
        np.testing.assert_array_equal(a.probs, s.probs)

    def test_resample_outcomes_follow_predictions(self):
        s = make_sample(np.full(20_000, 0.8), np.ones(20_000, dtype=bool))
        r = s.resample_outcomes(np.random.default_rng(0))
        assert r.labels.mean() == pytest.approx(0.8, abs=0.02)

    def test_subset(self, multiclass):
        s = make_sample(*multiclass)
        sub = s.subset([0, 0, 5])
        assert len(sub) == 3
        np.testing.assert_array_equal(sub.probs[0], sub.probs[1])


class TestGaussianPredictions:
    def test_invalid_std_raises(self):
        with pytest.raises(InvalidParameterError, match="std"):
            Normal(0.0, 0.0)

    def test_covariance_shapes(self):
        diag = GaussianPredictions(np.zeros((4, 2)), np.ones((4, 2)))
        assert diag.covs.shape == (4, 2, 2)
        assert diag.is_diagonal
        full = GaussianPredictions(np.zeros((1, 2)), [[[2.0, 1.0], [1.0, 2.0]]])
        assert not full.is_diagonal

    def test_mixed_distributions_raise(self):
        with pytest.raises(InvalidParameterError, match="mix"):
            GaussianPredictions.from_distributions([Normal(0, 1), MvNormal([0.0], [[1.0]])])

    def test_sample_shape(self):
        preds = GaussianPredictions.from_distributions([MvNormal([0.0, 1.0], np.eye(2))] * 5)
        draws = preds.sample(np.random.default_rng(0))
        assert draws.shape == (5, 2)

    def test_indexing(self):
        preds = GaussianPredictions([0.0, 1.0, 2.0], [1.0, 1.0, 4.0])
        sub = preds[np.array([2, 2])]
        assert len(sub) == 2
        np.testing.assert_allclose(sub.means[:, 0], [2.0, 2.0])


# -----------------------------------------------------------------------
# Distances
# -----------------------------------------------------------------------

class TestDistances:
    def test_total_variation(self):
        assert TotalVariation()([1.0, 0.0], [0.0, 1.0]) == pytest.approx(1.0)
        assert Cityblock()([1.0, 0.0], [0.0, 1.0]) == pytest.approx(2.0)

    def test_euclidean_pairwise(self):
        X = np.array([[0.0, 0.0], [3.0, 4.0]])
        D = Euclidean().pairwise(X)
        np.testing.assert_allclose(D, [[0.0, 5.0], [5.0, 0.0]])

    def test_shape_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError, match="TotalVariation"):
            TotalVariation()([0.5, 0.5], [0.2, 0.3, 0.5])

    def test_registry(self):
        assert get_distance("total_variation") == TotalVariation()
        assert get_distance("TotalVariation") == TotalVariation()
        assert get_distance("sq-euclidean").name == "sqeuclidean"
        with pytest.raises(InvalidParameterError, match="Unknown distance"):
            get_distance("hamming")

    def test_wasserstein_univariate(self):
        d = Wasserstein()(Normal(0.0, 1.0), Normal(3.0, 2.0))
        assert d == pytest.approx(np.sqrt(10.0))

    def test_wasserstein_full_covariance(self):
        S = np.array([[2.0, 1.0], [1.0, 2.0]])
        a = MvNormal([0.0, 0.0], S)
        b = MvNormal([1.0, 0.0], 4.0 * S)
        assert Wasserstein()(a, a) == pytest.approx(0.0, abs=1e-5)
        # commuting covariances: |dm|^2 + ||S^1/2 - (4S)^1/2||_F^2 = 1 + tr(S)
        assert Wasserstein()(a, b) == pytest.approx(np.sqrt(5.0), rel=1e-6)

    def test_wasserstein_rejects_vectors(self):
        with pytest.raises(InvalidParameterError, match="Gaussian"):
            Wasserstein().pairwise(np.zeros((2, 2)))

    def test_vector_distance_rejects_gaussians(self):
        with pytest.raises(InvalidParameterError, match="Wasserstein"):
            Euclidean().pairwise(GaussianPredictions([0.0], [1.0]))


# -----------------------------------------------------------------------
# Kernels
# -----------------------------------------------------------------------

class TestKernels:
    def test_values(self):
        assert ExponentialKernel()([0.0], [1.0]) == pytest.approx(np.exp(-1.0))
        assert SqExponentialKernel()([0.0], [1.0]) == pytest.approx(np.exp(-0.5))
        assert SqExponentialKernel(lengthscale=2.0)([0.0], [2.0]) == pytest.approx(np.exp(-0.5))
        assert Matern32Kernel()([0.0], [0.0]) == pytest.approx(1.0)
        r = np.sqrt(5.0)
        assert Matern52Kernel()([0.0], [1.0]) == pytest.approx((1 + r + r ** 2 / 3) * np.exp(-r))

    @pytest.mark.parametrize("lengthscale", [0.0, -1.0, np.inf])
    def test_invalid_lengthscale_raises(self, lengthscale):
        with pytest.raises(InvalidParameterError, match="lengthscale"):
            ExponentialKernel(lengthscale=lengthscale)

    def test_matrix_is_symmetric(self, multiclass):
        probs, _ = multiclass
        K = ExponentialKernel(metric=TotalVariation()).matrix(probs[:20])
        np.testing.assert_allclose(K, K.T)
        np.testing.assert_allclose(np.diag(K), 1.0)
        assert np.all(np.linalg.eigvalsh(K) > -1e-10)

    def test_metric_by_name(self):
        k = ExponentialKernel(metric="total_variation")
        assert isinstance(k.metric, TotalVariation)

    def test_white_kernel(self):
        K = WhiteKernel().matrix(np.array([0, 1, 0]))
        np.testing.assert_array_equal(K, [[1, 0, 1], [0, 1, 0], [1, 0, 1]])
        assert WhiteKernel()(2, 2) == 1.0

    def test_tensor_product(self):
        k = tensor(ExponentialKernel(), WhiteKernel())
        assert isinstance(k, TensorProductKernel)
        assert k(([0.0], 1), ([1.0], 1)) == pytest.approx(np.exp(-1.0))
        assert k(([0.0], 1), ([1.0], 0)) == 0.0
        assert k.upper_bound == 1.0

    def test_tensor_product_validation(self):
        with pytest.raises(InvalidParameterError, match="must be a Kernel"):
            tensor(ExponentialKernel(), "white")
        with pytest.raises(InvalidParameterError, match="tensor product"):
            tensor(tensor(ExponentialKernel(), WhiteKernel()), WhiteKernel())

    def test_registry(self):
        k = get_kernel("Matern32", lengthscale=0.5, metric="total_variation")
        assert isinstance(k, Matern32Kernel)
        assert k.lengthscale == 0.5
        assert isinstance(get_kernel("gaussian"), SqExponentialKernel)
        with pytest.raises(InvalidParameterError, match="Unknown kernel"):
            get_kernel("periodic")


# -----------------------------------------------------------------------
# Binning
# -----------------------------------------------------------------------

class TestBinning:
    @pytest.mark.parametrize("binning", [EqualSize(1), EqualSize(7), EqualMass(3), EqualMass(10)])
    @pytest.mark.parametrize("n_samples", [1, 5, 64])
    def test_partition(self, binning, n_samples):
        values = np.random.default_rng(n_samples).uniform(size=n_samples)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", SparseBinsWarning)
            assignments = binning.assign(values)
        assert assignments.shape == (n_samples,)
        assert assignments.min() >= 0 and assignments.max() < binning.n
        members = [np.flatnonzero(assignments == b) for b in range(binning.n)]
        np.testing.assert_array_equal(np.sort(np.concatenate(members)), np.arange(n_samples))

    @pytest.mark.parametrize("n", [0, -2, 2.5, True])
    def test_invalid_bin_count_raises(self, n):
        with pytest.raises(InvalidParameterError, match="number of bins"):
            EqualMass(n)

    def test_empty_sample_raises(self):
        with pytest.raises(InsufficientSamplesError, match="empty"):
            EqualSize(3).assign([])

    def test_equal_size_closed_on_right(self):
        b = EqualSize(2, bounds=(0.0, 1.0))
        np.testing.assert_array_equal(b.assign([0.0, 0.5, 0.51, 1.0]), [0, 0, 1, 1])
        np.testing.assert_allclose(b.edges([0.3]), [0.0, 0.5, 1.0])

    @pytest.mark.parametrize("n", range(2, 60))
    def test_equal_size_interior_edges_go_lower(self, n):
        b = EqualSize(n, bounds=(0.0, 1.0))
        on_edge = [i / n for i in range(1, n)]
        np.testing.assert_array_equal(b.assign(on_edge), np.arange(n - 1))
        above_edge = [i / n + 1e-9 for i in range(1, n)]
        np.testing.assert_array_equal(b.assign(above_edge), np.arange(1, n))

    def test_equal_size_constant_values(self):
        np.testing.assert_array_equal(EqualSize(4).assign([0.7, 0.7, 0.7]), [0, 0, 0])

    def test_equal_size_spans_data_range(self, scenario):
        conf, _ = scenario
        np.testing.assert_allclose(EqualSize(2).edges(conf), [0.6, 0.75, 0.9])
        np.testing.assert_array_equal(EqualSize(2).assign(conf), [1, 1, 0, 0])

    def test_equal_mass_sizes(self):
        counts = np.bincount(EqualMass(3).assign(np.arange(10.0)), minlength=3)
        np.testing.assert_array_equal(counts, [4, 3, 3])

    def test_equal_mass_ties_are_stable(self):
        np.testing.assert_array_equal(EqualMass(2).assign([0.5] * 4), [0, 0, 1, 1])

    def test_equal_mass_more_bins_than_samples(self):
        with pytest.warns(SparseBinsWarning, match="2 bins will be empty"):
            assignments = EqualMass(5).assign([0.3, 0.1, 0.2])
        np.testing.assert_array_equal(np.bincount(assignments, minlength=5), [1, 1, 1, 0, 0])

    def test_bins_statistics(self, scenario):
        bins = compute_bins(EqualSize(2), make_sample(*scenario))
        np.testing.assert_array_equal(bins.count, [2, 2])
        np.testing.assert_allclose(bins.confidence, [0.6, 0.9])
        np.testing.assert_allclose(bins.frequency[:, 0], [0.5, 1.0])
        assert [m.tolist() for m in bins.members] == [[2, 3], [0, 1]]

    def test_to_frame(self, multiclass):
        bins = compute_bins(EqualSize(5), make_sample(*multiclass))
        df = bins.to_frame()
        assert isinstance(df, pd.DataFrame)
        assert len(df) == 5
        assert {"count", "confidence", "frequency_0", "prediction_3"} <= set(df.columns)
        assert df["count"].sum() == 300

    def test_get_binning(self):
        assert isinstance(get_binning("equal_mass", 4), EqualMass)
        assert isinstance(get_binning("size"), EqualSize)
        with pytest.raises(InvalidParameterError, match="Unknown binning"):
            get_binning("kmeans")


# -----------------------------------------------------------------------
# ECE
# -----------------------------------------------------------------------

class TestECE:
    def test_two_bin_example(self, scenario):
        assert ECE(EqualSize(2), Cityblock())(*scenario) == pytest.approx(0.10)

    def test_total_variation_on_confidences(self, scenario):
        conf, outcomes = scenario
        two_class = np.column_stack([1 - conf, conf])
        binary = ECE(EqualSize(2), TotalVariation())(conf, outcomes)
        assert binary == pytest.approx(0.10)
        assert binary == pytest.approx(ECE(EqualSize(2), TotalVariation())(two_class, outcomes))
        assert compute_ece(conf, outcomes, n_bins=2) == pytest.approx(0.10)

    def test_mce_on_confidences(self, scenario):
        assert compute_mce(*scenario, n_bins=2) == pytest.approx(0.10)
        assert compute_mce(*scenario, n_bins=2, distance="cityblock") == pytest.approx(0.10)

    def test_single_sample_bins_contribute(self):
        ece = ECE(EqualSize(2, bounds=(0.0, 1.0)), Cityblock())
        assert ece([0.2, 0.8], [0, 1]) == pytest.approx(0.2)

    def test_more_bins_than_samples(self):
        with pytest.warns(SparseBinsWarning):
            value = ECE(EqualMass(5), Cityblock())([0.9, 0.6, 0.3], [1, 0, 0])
        assert value == pytest.approx((0.1 + 0.6 + 0.3) / 3)

    def test_bounds_for_total_variation(self, multiclass):
        for binning in (EqualSize(10), EqualMass(10)):
            value = ECE(binning, TotalVariation())(*multiclass)
            assert 0.0 <= value <= 1.0

    def test_deterministic(self, multiclass):
        ece = ECE(EqualMass(7))
        assert ece(*multiclass) == ece(*multiclass)

    def test_distance_by_name(self, scenario):
        assert ECE(EqualSize(2), "cityblock")(*scenario) == pytest.approx(0.10)

    def test_invalid_binning_raises(self):
        with pytest.raises(InvalidParameterError, match="binning"):
            ECE(10)

    def test_gaussian_predictions_rejected(self):
        with pytest.raises(InvalidParameterError, match="Gaussian"):
            ECE(EqualSize(2))([Normal(0, 1), Normal(1, 1)], [0.0, 1.0])

    def test_calibrated_is_small(self, calibrated_binary):
        assert compute_ece(*calibrated_binary, n_bins=10) < 0.05

    def test_overconfident_is_large(self):
        rng = np.random.default_rng(2)
        conf = rng.uniform(0.8, 1.0, size=1000)
        outcomes = rng.random(1000) < 0.6
        assert compute_ece(conf, outcomes, distance="cityblock") > 0.2

    def test_mce_bounds_ece(self, multiclass):
        for strategy in ("size", "mass"):
            ece = compute_ece(*multiclass, n_bins=8, strategy=strategy)
            mce = compute_mce(*multiclass, n_bins=8, strategy=strategy)
            assert mce >= ece

    def test_reliability_curve(self):
        conf = np.array([0.6, 0.7, 0.8, 0.9])
        c, f, n = reliability_curve(conf, [1, 0, 1, 1], binning=EqualSize(4, bounds=(0.0, 1.0)))
        np.testing.assert_array_equal(n, [0, 0, 2, 2])
        assert np.isnan(c[0]) and np.isnan(f[1])
        np.testing.assert_allclose(c[2:], [0.65, 0.85])
        np.testing.assert_allclose(f[2:], [0.5, 1.0])

    def test_reliability_curve_rejects_multiclass(self, multiclass):
        with pytest.raises(InvalidParameterError, match="1-D confidences"):
            reliability_curve(*multiclass)


# -----------------------------------------------------------------------
# Consistency bars
# -----------------------------------------------------------------------

class TestConsistencyBars:
    def test_calibrated_inside_bars(self, calibrated_binary):
        bars = consistency_bars(*calibrated_binary, n_resamples=300, rng=0)
        assert bars.lower.shape == (10,)
        assert np.all(bars.lower <= bars.confidence)
        assert np.all(bars.confidence <= bars.upper)
        assert bars.consistent.mean() >= 0.7

    def test_miscalibrated_outside_bars(self):
        rng = np.random.default_rng(3)
        conf = rng.uniform(0.5, 1.0, size=2000)
        outcomes = rng.random(2000) < conf - 0.3
        bars = consistency_bars(conf, outcomes, n_resamples=300, rng=0)
        assert bars.consistent.mean() < 0.2

    def test_reproducible(self, calibrated_binary):
        a = consistency_bars(*calibrated_binary, n_resamples=50, rng=7)
        b = consistency_bars(*calibrated_binary, n_resamples=50, rng=7)
        np.testing.assert_array_equal(a.lower, b.lower)

    def test_invalid_coverage_raises(self, calibrated_binary):
        with pytest.raises(InvalidParameterError, match="coverage"):
            consistency_bars(*calibrated_binary, coverage=1.5)
