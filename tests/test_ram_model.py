"""
RAM 모델 테스트

RAM 행렬 구성, 해석적 gradient, 다집단 자유도와 수렴 판정을 검증합니다.

Author: Sugar Substitute Research Team
Date: 2025-10-17
"""

import numpy as np
import pytest

from cfa_analysis.config import CFAAnalysisConfig, MODEL_BASE_NAME
from cfa_analysis.data_transformer import partition_by_group
from cfa_analysis.errors import ConvergenceError, MissingDataError, SpecificationError
from cfa_analysis.multigroup import MultigroupFitEngine, fit_single_group_ram
from cfa_analysis.ram_model import (RAMLayout, RAMModel, SampleMoments, fit_ram_model,
                                    numerical_hessian)


def _group_moments(data, spec, groups=(2, 3)):
    columns = spec.observed_variables
    partition = partition_by_group(data, 'Grade', groups)
    return [SampleMoments.from_frame(label, partition[label], columns) for label in partition.labels]


class TestRAMLayout:

    def test_base_layout(self, spec_store):
        layout = RAMLayout.from_specification(spec_store.get(MODEL_BASE_NAME))

        assert layout.n_observed == 12
        assert layout.n_variables == 15
        loadings = [e for e in layout.entries if e.kind == 'loading']
        assert len(loadings) == 12
        assert sum(e.fixed == 1.0 for e in loadings) == 3

    def test_factor_covariances(self, spec_store):
        layout = RAMLayout.from_specification(spec_store.get(MODEL_BASE_NAME))

        assert layout.has_covariance('WTA', 'INT')
        assert layout.has_covariance('SEF', 'WTA')
        assert not layout.has_covariance('i56', 'i57')

    def test_sample_moments_require_enough_rows(self, impact_data, spec_store):
        columns = spec_store.get(MODEL_BASE_NAME).observed_variables
        with pytest.raises(SpecificationError):
            SampleMoments.from_frame('tiny', impact_data.head(5), columns)

    def test_sample_moments_reject_missing_values(self, impact_data, spec_store):
        columns = spec_store.get(MODEL_BASE_NAME).observed_variables
        data = impact_data.copy()
        data.loc[:9, 'i57'] = np.nan

        with pytest.raises(MissingDataError):
            SampleMoments.from_frame('all', data, columns)

    def test_pairwise_sample_moments(self, impact_data, spec_store):
        columns = spec_store.get(MODEL_BASE_NAME).observed_variables
        data = impact_data.copy()
        data.loc[:9, 'i57'] = np.nan

        moments = SampleMoments.from_frame('all', data, columns, pairwise=True)

        assert moments.n == len(data)
        np.testing.assert_allclose(moments.cov, data[columns].cov(ddof=0).to_numpy())
        assert moments.mean[1] == pytest.approx(data['i57'].mean())


class TestRAMObjective:

    @pytest.mark.parametrize('group_equal', [(), ('loadings',), ('loadings', 'intercepts')])
    def test_gradient_matches_finite_differences(self, impact_data, spec_store, group_equal):
        spec = spec_store.get(MODEL_BASE_NAME)
        moments = _group_moments(impact_data, spec)
        model = RAMModel(RAMLayout.from_specification(spec), [m.label for m in moments], group_equal)
        weights = [0.5, 0.5]

        rng = np.random.default_rng(0)
        theta = model.start_values(moments) + rng.uniform(0.0, 0.05, model.n_params)

        _, grad = model.objective(theta, moments, weights)
        numeric = np.zeros_like(theta)
        for i in range(len(theta)):
            h = 1e-6
            plus, minus = theta.copy(), theta.copy()
            plus[i] += h
            minus[i] -= h
            numeric[i] = (model.objective(plus, moments, weights)[0]
                          - model.objective(minus, moments, weights)[0]) / (2 * h)

        np.testing.assert_allclose(grad, numeric, rtol=1e-4, atol=1e-6)

    @pytest.mark.parametrize('g', [0, 1])
    def test_moment_derivatives_match_finite_differences(self, impact_data, spec_store, g):
        spec = spec_store.get(MODEL_BASE_NAME)
        moments = _group_moments(impact_data, spec)
        model = RAMModel(RAMLayout.from_specification(spec), [m.label for m in moments],
                         ('loadings', 'intercepts'))

        rng = np.random.default_rng(1)
        theta = model.start_values(moments) + rng.uniform(0.0, 0.05, model.n_params)
        d_sigma, d_mu = model.moment_derivatives(theta, g)

        h = 1e-6
        for i in range(model.n_params):
            plus, minus = theta.copy(), theta.copy()
            plus[i] += h
            minus[i] -= h
            sigma_plus, mu_plus, _ = model.implied_moments(plus, g)
            sigma_minus, mu_minus, _ = model.implied_moments(minus, g)
            np.testing.assert_allclose(d_sigma[i], (sigma_plus - sigma_minus) / (2 * h), atol=1e-6)
            np.testing.assert_allclose(d_mu[i], (mu_plus - mu_minus) / (2 * h), atol=1e-6)

    @pytest.mark.parametrize('group_equal', [(), ('loadings',), ('loadings', 'intercepts')])
    def test_expected_information_equals_hessian_at_exact_fit(self, impact_data, spec_store,
                                                              group_equal):
        spec = spec_store.get(MODEL_BASE_NAME)
        sample = _group_moments(impact_data, spec)
        model = RAMModel(RAMLayout.from_specification(spec), [m.label for m in sample], group_equal)

        rng = np.random.default_rng(2)
        theta = model.start_values(sample) + rng.uniform(0.0, 0.05, model.n_params)

        # 표본 적률이 모형 적률과 같으면 관측 Hessian과 기대 정보행렬이 일치
        exact = []
        for g, label in enumerate(model.group_labels):
            sigma, mu, _ = model.implied_moments(theta, g)
            exact.append(SampleMoments(label=label, n=300, mean=mu, cov=sigma,
                                       logdet=np.linalg.slogdet(sigma)[1]))
        weights = [0.5, 0.5]

        information = model.expected_information(theta, weights)
        hessian = numerical_hessian(lambda th: model.objective(th, exact, weights)[1], theta)

        np.testing.assert_allclose(information, hessian, rtol=1e-4, atol=1e-5)
        eigenvalues = np.linalg.eigvalsh(information)
        assert eigenvalues.min() > -1e-8 * eigenvalues.max()

    def test_numerical_hessian_quadratic(self):
        matrix = np.array([[2.0, 0.5], [0.5, 1.0]])
        hessian = numerical_hessian(lambda th: matrix @ th, np.array([0.3, -0.2]))
        np.testing.assert_allclose(hessian, matrix, atol=1e-6)


class TestMultigroupFit:

    @pytest.mark.parametrize('group_equal, expected_dof', [
        ((), 102),
        (('loadings',), 111),
        (('loadings', 'intercepts'), 120),
    ])
    def test_degrees_of_freedom(self, invariant_data, spec_store, quiet_config,
                                group_equal, expected_dof):
        engine = MultigroupFitEngine(quiet_config)
        fitted = engine.fit(spec_store.get(MODEL_BASE_NAME), invariant_data, 'Grade',
                            group_equal=group_equal, groups=(2, 3))

        assert fitted.dof == expected_dof
        assert fitted.groups == (2, 3)
        assert fitted.group_sizes == {2: 300, 3: 300}

    def test_equal_loadings_across_groups(self, invariant_data, spec_store, quiet_config):
        fitted = MultigroupFitEngine(quiet_config).fit(
            spec_store.get(MODEL_BASE_NAME), invariant_data, 'Grade', group_equal=('loadings',))

        loadings = fitted.loadings
        grade2 = loadings[loadings['group'] == 2]['Estimate'].to_numpy()
        grade3 = loadings[loadings['group'] == 3]['Estimate'].to_numpy()
        np.testing.assert_allclose(grade2, grade3)

    def test_single_group_matches_semopy_dof(self, impact_data, spec_store, quiet_config):
        result = fit_single_group_ram(spec_store.get(MODEL_BASE_NAME), impact_data, quiet_config)
        assert result.fit_indices()['DoF'] == 51

    def test_missing_values_kept_without_listwise(self, invariant_data, spec_store):
        data = invariant_data.copy()
        grade2 = data.index[data['Grade'] == 2][:10]
        data.loc[grade2, 'i58'] = np.nan
        spec = spec_store.get(MODEL_BASE_NAME)

        pairwise = MultigroupFitEngine(CFAAnalysisConfig(verbose=False, missing_data_method='none'))
        fitted = pairwise.fit(spec, data, 'Grade', groups=(2, 3))
        assert fitted.group_sizes == {2: 300, 3: 300}
        assert np.isfinite(fitted.chi2)

        listwise = MultigroupFitEngine(CFAAnalysisConfig(verbose=False))
        assert listwise.fit(spec, data, 'Grade', groups=(2, 3)).group_sizes == {2: 290, 3: 300}

    def test_single_group_ram_with_missing_values(self, impact_data, spec_store):
        data = impact_data.copy()
        data.loc[:9, 'i58'] = np.nan
        config = CFAAnalysisConfig(verbose=False, missing_data_method='none')

        result = fit_single_group_ram(spec_store.get(MODEL_BASE_NAME), data, config)
        assert result.n_total == len(data)

    def test_single_group_chi2_close_to_semopy(self, impact_data, spec_store, fitted_models,
                                               quiet_config):
        result = fit_single_group_ram(spec_store.get(MODEL_BASE_NAME), impact_data, quiet_config)
        semopy_chi2 = fitted_models[MODEL_BASE_NAME].chi2

        assert result.fit_indices()['chi2'] == pytest.approx(semopy_chi2, rel=0.05)

    def test_single_group_rejected(self, impact_data, spec_store, quiet_config):
        data = impact_data[impact_data['Grade'] == 2]
        with pytest.raises(SpecificationError):
            MultigroupFitEngine(quiet_config).fit(spec_store.get(MODEL_BASE_NAME), data, 'Grade')

    def test_iteration_limit_raises(self, impact_data, spec_store):
        spec = spec_store.get(MODEL_BASE_NAME)
        moments = _group_moments(impact_data, spec)
        model = RAMModel(RAMLayout.from_specification(spec), [m.label for m in moments])

        with pytest.raises(ConvergenceError) as excinfo:
            fit_ram_model(model, moments, max_iterations=1)
        assert excinfo.value.n_iterations is not None
