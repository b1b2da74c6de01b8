"""
Measurement Invariance 테스트

configural → weak → strong 순서 검증과 Grade 2 vs 3 다집단 비교를 검증합니다.

Author: Sugar Substitute Research Team
Date: 2025-10-17
"""

import pytest

from cfa_analysis import CFAAnalysisConfig
from cfa_analysis.config import MODEL_BASE_NAME
from cfa_analysis.errors import InvarianceOrderError
from cfa_analysis.invariance import (INVARIANCE_ORDER, InvarianceLevel,
                                     MeasurementInvarianceTester, compare_invariance_levels,
                                     validate_level_order)

from conftest import make_impact_data

C, W, S = InvarianceLevel.CONFIGURAL, InvarianceLevel.WEAK, InvarianceLevel.STRONG


@pytest.fixture(scope='module')
def invariance_result(invariant_data, spec_store):
    tester = MeasurementInvarianceTester(CFAAnalysisConfig(verbose=False))
    return tester.run(spec_store.get(MODEL_BASE_NAME), invariant_data, 'Grade', groups=(2, 3))


class TestLevelOrder:

    def test_full_order(self):
        assert validate_level_order(['configural', 'weak', 'strong']) == list(INVARIANCE_ORDER)

    def test_aliases(self):
        assert InvarianceLevel.parse('metric') is W
        assert InvarianceLevel.parse('Scalar') is S

    @pytest.mark.parametrize('levels', [
        [C, S, W],
        [W, S],
        [C, S],
        [S],
        [],
    ])
    def test_invalid_order(self, levels):
        with pytest.raises(InvarianceOrderError):
            validate_level_order(levels)

    def test_unknown_level(self):
        with pytest.raises(InvarianceOrderError):
            InvarianceLevel.parse('strict')

    def test_group_equal(self):
        assert C.group_equal == ()
        assert W.group_equal == ('loadings',)
        assert S.group_equal == ('loadings', 'intercepts')

    def test_tester_rejects_bad_order_before_fitting(self, invariant_data, spec_store):
        tester = MeasurementInvarianceTester(CFAAnalysisConfig(verbose=False))
        with pytest.raises(InvarianceOrderError):
            tester.run(spec_store.get(MODEL_BASE_NAME), invariant_data, 'Grade',
                       levels=[C, S, W])


class TestInvarianceRun:

    def test_degrees_of_freedom(self, invariance_result):
        fits = invariance_result.fits

        assert [fits[level].dof for level in (C, W, S)] == [102, 111, 120]

    def test_adjacent_comparisons(self, invariance_result):
        comparisons = invariance_result.comparisons

        assert [(cmp.lower, cmp.higher) for cmp in comparisons] == [(C, W), (W, S)]
        assert [cmp.test.df_diff for cmp in comparisons] == [9, 9]

    def test_chi2_increases_with_constraints(self, invariance_result):
        fits = invariance_result.fits
        assert fits[C].chi2 <= fits[W].chi2 + 1e-6
        assert fits[W].chi2 <= fits[S].chi2 + 1e-6

    def test_groups(self, invariance_result):
        assert invariance_result.groups == (2, 3)
        assert invariance_result.group_sizes == {2: 300, 3: 300}

    def test_tables(self, invariance_result):
        assert len(invariance_result.fit_table()) == 3
        table = invariance_result.comparison_table()
        assert table['Δdf'].tolist() == [9, 9]

    def test_compare_requires_fitted_levels(self, invariance_result):
        fits = {C: invariance_result.fits[C], S: invariance_result.fits[S]}
        with pytest.raises(InvarianceOrderError):
            compare_invariance_levels(fits)

    def test_configural_only(self, invariant_data, spec_store):
        tester = MeasurementInvarianceTester(CFAAnalysisConfig(verbose=False))
        result = tester.run(spec_store.get(MODEL_BASE_NAME), invariant_data, 'Grade',
                            groups=(2, 3), levels=['configural'])

        assert result.comparisons == []
        assert result.supported_level is C


class TestNonInvariance:

    def test_intercept_shift_breaks_strong_invariance(self, spec_store):
        data = make_impact_data(n_per_grade=(0, 300, 300), seed=11, cross_loading=0.0,
                                intercept_shift=1.0)
        tester = MeasurementInvarianceTester(CFAAnalysisConfig(verbose=False))
        result = tester.run(spec_store.get(MODEL_BASE_NAME), data, 'Grade', groups=(2, 3))

        strong = result.comparisons[-1]
        assert strong.higher is S
        assert strong.test.significant
        assert not strong.holds
        assert result.supported_level is not S
