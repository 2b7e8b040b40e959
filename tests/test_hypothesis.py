from __future__ import annotations

import os
import unittest

os.environ.setdefault("JAX_PLATFORM_NAME", "cpu")
os.environ.setdefault("JAX_PLATFORMS", "cpu")

import numpy as np

from hypothesis import assume, given, settings
from hypothesis import strategies as st
from hypothesis.extra import numpy as hnp

from markersel import anneal, freq, identity, scoring
from markersel.genotypes import GenotypeMatrix, GroupAssignment
from tests.jax_preflight import assert_cpu_backend

assert_cpu_backend()


@st.composite
def _genotype_matrix(draw, allow_nan: bool = True, min_ind: int = 2, max_ind: int = 8):
    n_ind = draw(st.integers(min_value=min_ind, max_value=max_ind))
    n_snp = draw(st.integers(min_value=1, max_value=10))
    values = [0.0, 1.0, 2.0, np.nan] if allow_nan else [0.0, 1.0, 2.0]
    genon = draw(
        hnp.arrays(
            dtype=np.float32,
            shape=(n_ind, n_snp),
            elements=st.sampled_from(values),
        )
    )
    return GenotypeMatrix(
        sample_ids=[f"S{i}" for i in range(n_ind)],
        marker_ids=[f"M{s}" for s in range(n_snp)],
        genon=genon,
    )


@st.composite
def _grouped_matrix(draw, allow_nan: bool = False):
    matrix = draw(_genotype_matrix(allow_nan=allow_nan, min_ind=4))
    n_groups = draw(st.integers(min_value=2, max_value=min(3, matrix.n_ind)))
    # Round-robin so every group has at least one individual.
    labels = [f"G{i % n_groups}" for i in range(matrix.n_ind)]
    groups = GroupAssignment.from_arrays(matrix.sample_ids, labels)
    return matrix, groups


class TestScoreProperties(unittest.TestCase):
    @given(st.floats(min_value=0.0, max_value=1.0, allow_nan=False))
    @settings(max_examples=100, deadline=None)
    def test_he_symmetric(self, p: float) -> None:
        self.assertAlmostEqual(
            scoring.expected_heterozygosity(p), scoring.expected_heterozygosity(1.0 - p), places=12
        )

    @given(
        st.floats(min_value=0.0, max_value=1.0, allow_nan=False),
        st.floats(min_value=0.0, max_value=1.0, allow_nan=False),
    )
    @settings(max_examples=100, deadline=None)
    def test_jost_d_range_and_symmetry(self, p: float, q: float) -> None:
        d = scoring.jost_d(p, q)
        self.assertGreaterEqual(d, 0.0)
        self.assertLessEqual(d, 1.0 + 1e-12)
        self.assertAlmostEqual(d, scoring.jost_d(q, p), places=12)

    @given(_grouped_matrix(), st.randoms(use_true_random=False))
    @settings(max_examples=40, deadline=None)
    def test_marker_order_invariance(self, data, rnd) -> None:
        matrix, groups = data
        fm = freq.group_frequencies(matrix, groups)
        subset = list(fm.marker_ids)
        shuffled = subset[:]
        rnd.shuffle(shuffled)
        self.assertAlmostEqual(
            scoring.diversity_score(fm, subset), scoring.diversity_score(fm, shuffled), places=10
        )
        self.assertAlmostEqual(
            scoring.differentiation_score(fm, subset),
            scoring.differentiation_score(fm, shuffled),
            places=10,
        )

    @given(_grouped_matrix())
    @settings(max_examples=40, deadline=None)
    def test_group_relabel_invariance(self, data) -> None:
        matrix, groups = data
        fm = freq.group_frequencies(matrix, groups)
        # Rename labels and present them in reverse order.
        renamed = GroupAssignment.from_arrays(
            matrix.sample_ids, [f"X{lab}" for lab in groups.labels_for(matrix.sample_ids)]
        )
        fm2 = freq.group_frequencies(
            matrix, renamed, groups=[f"X{g}" for g in reversed(fm.groups)]
        )
        self.assertAlmostEqual(
            scoring.diversity_score(fm, fm.marker_ids),
            scoring.diversity_score(fm2, fm2.marker_ids),
            places=10,
        )
        self.assertAlmostEqual(
            scoring.differentiation_score(fm, fm.marker_ids),
            scoring.differentiation_score(fm2, fm2.marker_ids),
            places=10,
        )

    @given(_grouped_matrix(), st.sampled_from([0.0, 2.0]))
    @settings(max_examples=30, deadline=None)
    def test_fixed_marker_zeroes_diversity(self, data, fixed: float) -> None:
        matrix, groups = data
        genon = np.array(matrix.genon)
        genon[:, 0] = fixed
        matrix = GenotypeMatrix(matrix.sample_ids, matrix.marker_ids, genon)
        fm = freq.group_frequencies(matrix, groups)
        self.assertEqual(scoring.diversity_score(fm, fm.marker_ids), 0.0)


class TestFrequencyProperties(unittest.TestCase):
    @given(_grouped_matrix(allow_nan=True))
    @settings(max_examples=40, deadline=None)
    def test_frequency_bounds_and_definedness(self, data) -> None:
        matrix, groups = data
        fm = freq.group_frequencies(matrix, groups)
        vals = fm.freq[fm.defined]
        self.assertTrue(np.all((vals >= 0.0) & (vals <= 1.0)))
        self.assertTrue(np.all(np.isnan(fm.freq[~fm.defined])))
        np.testing.assert_array_equal(fm.defined, fm.counts > 0)


class TestIdentityProperties(unittest.TestCase):
    @given(_genotype_matrix())
    @settings(max_examples=40, deadline=None)
    def test_ibs_symmetric_with_unit_diagonal(self, matrix) -> None:
        ibs = identity.ibs_matrix(matrix)
        np.testing.assert_array_equal(np.diag(ibs), np.ones(matrix.n_ind))
        np.testing.assert_allclose(ibs, ibs.T, equal_nan=True)
        finite = ibs[np.isfinite(ibs)]
        self.assertTrue(np.all((finite >= 0.0) & (finite <= 1.0)))

    @given(_genotype_matrix(), st.data())
    @settings(max_examples=40, deadline=None)
    def test_proportion_unique_monotone(self, matrix, data) -> None:
        order = data.draw(st.permutations(matrix.marker_ids))
        k = data.draw(st.integers(min_value=0, max_value=len(order)))
        small = identity.proportion_unique(matrix, order[:k])
        large = identity.proportion_unique(matrix, order)
        self.assertLessEqual(small, large)

    @given(_genotype_matrix(allow_nan=False))
    @settings(max_examples=30, deadline=None)
    def test_het_rate_bounds(self, matrix) -> None:
        rate = identity.heterozygosity_rate(matrix)
        self.assertEqual(rate.shape, (matrix.n_ind,))
        self.assertTrue(np.all((rate >= 0.0) & (rate <= 1.0)))


class TestAnnealProperties(unittest.TestCase):
    @given(_grouped_matrix(), st.integers(min_value=0, max_value=2**31 - 1))
    @settings(max_examples=20, deadline=None)
    def test_seeded_runs_repeat_and_best_is_monotone(self, data, seed: int) -> None:
        matrix, groups = data
        assume(matrix.n_snp >= 2)
        fm = freq.group_frequencies(matrix, groups)
        objective = scoring.Objective("weighted")
        cfg = anneal.AnnealConfig(
            target_subset_size=max(1, matrix.n_snp // 2),
            iteration_budget=60,
            random_seed=seed,
            objective=objective,
        )
        r1 = anneal.anneal_markers(fm, cfg)
        r2 = anneal.anneal_markers(fm, cfg)
        self.assertEqual(r1.marker_ids, r2.marker_ids)
        self.assertEqual(r1.score, r2.score)
        self.assertTrue(np.all(np.diff(r1.best_trace) >= 0.0))
        self.assertEqual(len(set(r1.marker_ids)), cfg.target_subset_size)

        div = scoring.diversity_score(fm, r1.marker_ids)
        diff = scoring.differentiation_score(fm, r1.marker_ids)
        self.assertAlmostEqual(r1.score, objective.combine(div, diff), places=12)


if __name__ == "__main__":
    unittest.main()
