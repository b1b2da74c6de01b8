"""
RAM (Reticular Action Model) 공분산/평균 구조 모듈

semopy는 단일 집단 적합만 지원하고 집단 간 동일성 제약과 수정지수를 제공하지 않으므로,
그 두 가지를 위해 모델 스펙을 RAM 행렬(A, S, m)로 표현하고
최대우도(ML) 불일치 함수와 해석적 gradient를 계산합니다.

    Σ = F (I - A)^-1 S (I - A)^-T F'
    μ = F (I - A)^-1 m

ML 불일치 함수 (집단 g, 가중치 N_g / N):
    F_g = log|Σ| + tr(S Σ^-1) - log|S| - p + (x̄ - μ)' Σ^-1 (x̄ - μ)
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import logging
import warnings

from scipy import stats
from scipy.optimize import minimize

from .errors import ConvergenceError, MissingDataError, SpecificationError
from .model_spec import ModelSpecification, RelationKind

logger = logging.getLogger(__name__)

# 공분산 행렬이 양정치가 아닐 때 반환하는 목적함수 값
_INFEASIBLE = 1e10
_VARIANCE_LOWER_BOUND = 1e-6


@dataclass(frozen=True)
class ParamEntry:
    """RAM 행렬의 한 원소에 대응하는 파라미터"""

    matrix: str  # 'A', 'S', 'm'
    row: int
    col: int
    kind: str  # loading, regression, variance, covariance, intercept, latent_mean
    op: str
    lval: str
    rval: str
    fixed: Optional[float] = None
    label: Optional[str] = None
    start: Optional[float] = None


def _split_modifier(modifier) -> Tuple[Optional[float], Optional[str]]:
    if isinstance(modifier, float):
        return modifier, None
    if isinstance(modifier, str):
        return None, modifier
    return None, None


class RAMLayout:
    """변수 순서(관측변수 → 잠재변수)와 파라미터 원소 목록"""

    def __init__(self, observed: Sequence[str], latent: Sequence[str],
                 entries: Sequence[ParamEntry]):
        self.observed = list(observed)
        self.latent = list(latent)
        self.variables = self.observed + self.latent
        self.index = {name: i for i, name in enumerate(self.variables)}
        self.entries = list(entries)

    @property
    def n_observed(self) -> int:
        return len(self.observed)

    @property
    def n_variables(self) -> int:
        return len(self.variables)

    def with_entries(self, extra: Sequence[ParamEntry]) -> 'RAMLayout':
        """같은 변수 구성에 원소를 덧붙인 새 layout"""
        return RAMLayout(self.observed, self.latent, self.entries + list(extra))

    def has_covariance(self, name1: str, name2: str) -> bool:
        i, j = self.index[name1], self.index[name2]
        return any(e.matrix == 'S' and {e.row, e.col} == {i, j} for e in self.entries)

    @classmethod
    def from_specification(cls, spec: ModelSpecification) -> 'RAMLayout':
        """
        모델 스펙으로부터 RAM layout 생성

        기본 파라미터:
            - 요인별 첫 번째 지표의 적재량은 1로 고정 (수식어가 없을 때)
            - 모든 변수의 (잔차)분산 자유추정
            - 외생 잠재변수 간, 외생 관측변수 간 공분산 자유추정
            - 관측변수 절편 자유추정, 잠재변수 평균 0 고정
        """
        observed = spec.observed_variables
        latent = spec.latent_variables
        idx = {name: i for i, name in enumerate(observed + latent)}
        entries: List[ParamEntry] = []

        # 측정 관계
        primary: Dict[str, str] = {}
        for latent_name, indicator in spec.loadings:
            modifier = spec.loading_modifier(latent_name, indicator)
            fixed, label = _split_modifier(modifier)
            if modifier is None and spec.indicators_of(latent_name)[0] == indicator:
                fixed = 1.0
            start = 1.0 if indicator not in primary else 0.0
            primary.setdefault(indicator, latent_name)
            entries.append(ParamEntry('A', idx[indicator], idx[latent_name], 'loading', '=~',
                                      latent_name, indicator, fixed, label, start))

        # 회귀 관계
        seen_paths = set()
        for rel in spec.relations_of(RelationKind.REGRESSION):
            for term in rel.terms:
                if (rel.target, term.name) in seen_paths:
                    continue
                seen_paths.add((rel.target, term.name))
                fixed, label = _split_modifier(term.modifier)
                entries.append(ParamEntry('A', idx[rel.target], idx[term.name], 'regression', '~',
                                          rel.target, term.name, fixed, label, 0.0))

        endogenous = {e.row for e in entries if e.matrix == 'A'}

        # 명시적 공분산
        explicit = set()
        for rel in spec.relations_of(RelationKind.COVARIANCE):
            for term in rel.terms:
                i, j = idx[rel.target], idx[term.name]
                key = (min(i, j), max(i, j))
                if key in explicit:
                    continue
                explicit.add(key)
                fixed, label = _split_modifier(term.modifier)
                kind = 'variance' if i == j else 'covariance'
                entries.append(ParamEntry('S', i, j, kind, '~~', rel.target, term.name,
                                          fixed, label))

        names = observed + latent

        # 기본 분산
        for i, name in enumerate(names):
            if (i, i) not in explicit:
                entries.append(ParamEntry('S', i, i, 'variance', '~~', name, name))

        # 외생변수 간 기본 공분산 (잠재끼리, 관측끼리)
        exo_latent = [idx[name] for name in latent if idx[name] not in endogenous]
        exo_observed = [idx[name] for name in observed if idx[name] not in endogenous]
        for group in (exo_latent, exo_observed):
            for a, i in enumerate(group):
                for j in group[a + 1:]:
                    if (min(i, j), max(i, j)) not in explicit:
                        entries.append(ParamEntry('S', i, j, 'covariance', '~~', names[i], names[j]))

        # 평균 구조
        for name in observed:
            entries.append(ParamEntry('m', idx[name], 0, 'intercept', '~1', name, ''))
        for name in latent:
            entries.append(ParamEntry('m', idx[name], 0, 'latent_mean', '~1', name, '', fixed=0.0))

        return cls(observed, latent, entries)


@dataclass
class SampleMoments:
    """집단별 표본 통계량 (ML용 편향 공분산)"""

    label: Any
    n: int
    mean: np.ndarray
    cov: np.ndarray
    logdet: float

    @classmethod
    def from_frame(cls, label, frame: pd.DataFrame, columns: Sequence[str],
                   pairwise: bool = False) -> 'SampleMoments':
        """
        표본 평균과 ML 공분산 계산

        Args:
            label: 집단 값
            frame (pd.DataFrame): 집단 데이터
            columns (Sequence[str]): 관측변수 순서
            pairwise (bool): True면 결측치를 변수 쌍별로 제외 (missing_data_method='none')
        """
        values = frame[list(columns)].astype(float)
        if len(values) <= len(columns):
            raise SpecificationError(
                f"집단 {label}의 표본 수({len(values)})가 변수 수({len(columns)})보다 적습니다"
            )

        n_missing = int(values.isna().sum().sum())
        if n_missing and not pairwise:
            raise MissingDataError(
                f"집단 {label}의 모델 변수에 결측치 {n_missing}개가 있습니다 "
                f"(missing_data_method='listwise'로 제거하거나 'none'으로 쌍별 처리하세요)"
            )
        if n_missing:
            logger.info(f"집단 {label}: 결측치 {n_missing}개를 변수 쌍별로 제외하고 공분산 계산")

        cov = values.cov(ddof=0).to_numpy()
        mean = values.mean().to_numpy()
        if np.isnan(cov).any():
            raise MissingDataError(f"집단 {label}: 함께 관측된 값이 없는 변수 쌍이 있습니다")

        sign, logdet = np.linalg.slogdet(cov)
        if sign <= 0:
            raise SpecificationError(f"집단 {label}의 표본 공분산 행렬이 양정치가 아닙니다")
        return cls(label=label, n=len(values), mean=mean, cov=cov, logdet=logdet)


class RAMModel:
    """집단별 RAM 행렬과 파라미터 벡터의 대응 관계"""

    def __init__(self, layout: RAMLayout, group_labels: Sequence[Any] = (None,),
                 group_equal: Sequence[str] = ()):
        self.layout = layout
        self.group_labels = list(group_labels)
        self.group_equal = tuple(group_equal)

        self.param_keys: List[Tuple] = []
        self.param_info: List[Tuple[ParamEntry, Optional[int]]] = []
        self.group_free: List[List[Tuple[ParamEntry, int]]] = [[] for _ in self.group_labels]
        self.group_fixed: List[List[Tuple[ParamEntry, float]]] = [[] for _ in self.group_labels]

        key_index: Dict[Tuple, int] = {}
        # 원소 우선, 집단 내부 순회: 뒤에 덧붙인 원소의 파라미터는 항상 벡터 끝에 위치
        for pos, entry in enumerate(layout.entries):
            for g in range(self.n_groups):
                fixed = self._fixed_value(entry, g)
                if fixed is not None:
                    self.group_fixed[g].append((entry, fixed))
                    continue
                shared = self._is_shared(entry)
                if entry.label is not None:
                    key = ('label', entry.label)
                elif shared:
                    key = ('shared', pos)
                else:
                    key = ('group', pos, g)
                if key not in key_index:
                    key_index[key] = len(self.param_keys)
                    self.param_keys.append(key)
                    self.param_info.append((entry, None if (shared or entry.label) else g))
                self.group_free[g].append((entry, key_index[key]))

    @property
    def n_groups(self) -> int:
        return len(self.group_labels)

    @property
    def n_params(self) -> int:
        return len(self.param_keys)

    def _is_shared(self, entry: ParamEntry) -> bool:
        if entry.kind == 'loading' and 'loadings' in self.group_equal:
            return True
        if entry.kind == 'intercept' and 'intercepts' in self.group_equal:
            return True
        return False

    def _fixed_value(self, entry: ParamEntry, g: int) -> Optional[float]:
        if entry.kind == 'latent_mean':
            # 절편 동일성 제약 시 기준 집단 외의 잠재평균을 자유추정
            if 'intercepts' in self.group_equal and g > 0 and entry.label is None:
                return None
            return entry.fixed if entry.fixed is not None else 0.0
        return entry.fixed

    def matrices(self, theta: np.ndarray, g: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """집단 g의 (A, S, m)"""
        m = self.layout.n_variables
        A = np.zeros((m, m))
        S = np.zeros((m, m))
        mv = np.zeros(m)
        for entry, value in self.group_fixed[g]:
            _assign(A, S, mv, entry, value)
        for entry, idx in self.group_free[g]:
            _assign(A, S, mv, entry, theta[idx])
        return A, S, mv

    def implied_moments(self, theta: np.ndarray, g: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(Σ, μ, 전체 변수 공분산 C)"""
        A, S, mv = self.matrices(theta, g)
        B = np.linalg.inv(np.eye(self.layout.n_variables) - A)
        C = B @ S @ B.T
        p = self.layout.n_observed
        return C[:p, :p], (B @ mv)[:p], C

    def start_values(self, moments: Sequence[SampleMoments]) -> np.ndarray:
        theta = np.zeros(self.n_params)
        p = self.layout.n_observed
        markers = {}
        for entry in self.layout.entries:
            if entry.kind == 'loading' and entry.col not in markers:
                markers[entry.col] = entry.row

        for i, (entry, g) in enumerate(self.param_info):
            mom = moments[g if g is not None else 0]
            if entry.start is not None:
                theta[i] = entry.start
            elif entry.kind == 'variance':
                if entry.row < p:
                    theta[i] = 0.5 * mom.cov[entry.row, entry.row]
                else:
                    marker = markers.get(entry.row)
                    theta[i] = 0.5 * mom.cov[marker, marker] if marker is not None and marker < p else 0.05
            elif entry.kind == 'intercept':
                theta[i] = mom.mean[entry.row]
        return theta

    def bounds(self) -> List[Tuple[Optional[float], Optional[float]]]:
        return [(_VARIANCE_LOWER_BOUND, None) if entry.kind == 'variance' else (None, None)
                for entry, _ in self.param_info]

    def discrepancies(self, theta: np.ndarray, moments: Sequence[SampleMoments]) -> List[float]:
        """집단별 ML 불일치 함수 값"""
        values = []
        p = self.layout.n_observed
        for g, mom in enumerate(moments):
            sigma, mu, _ = self.implied_moments(theta, g)
            sign, logdet = np.linalg.slogdet(sigma)
            if sign <= 0:
                values.append(np.inf)
                continue
            sigma_inv = np.linalg.inv(sigma)
            d = mom.mean - mu
            values.append(logdet + np.trace(mom.cov @ sigma_inv) - mom.logdet - p + d @ sigma_inv @ d)
        return values

    def objective(self, theta: np.ndarray, moments: Sequence[SampleMoments],
                  weights: Sequence[float]) -> Tuple[float, np.ndarray]:
        """가중 ML 불일치 함수 값과 해석적 gradient"""
        grad = np.zeros(self.n_params)
        total = 0.0
        m = self.layout.n_variables
        p = self.layout.n_observed
        identity = np.eye(m)

        for g, (mom, w) in enumerate(zip(moments, weights)):
            A, S, mv = self.matrices(theta, g)
            try:
                B = np.linalg.inv(identity - A)
                C = B @ S @ B.T
                sigma = C[:p, :p]
                chol = np.linalg.cholesky(sigma)
            except np.linalg.LinAlgError:
                return _INFEASIBLE, np.zeros(self.n_params)

            sigma_inv = np.linalg.inv(sigma)
            logdet = 2.0 * np.sum(np.log(np.diag(chol)))
            Bm = B @ mv
            d = mom.mean - Bm[:p]
            total += w * (logdet + np.trace(mom.cov @ sigma_inv) - mom.logdet - p
                          + d @ sigma_inv @ d)

            W = sigma_inv - sigma_inv @ (mom.cov + np.outer(d, d)) @ sigma_inv
            G = np.zeros((m, m))
            G[:p, :p] = W
            M = B.T @ G @ B
            K = C @ G @ B
            u = np.zeros(m)
            u[:p] = sigma_inv @ d
            Bu = B.T @ u

            for entry, idx in self.group_free[g]:
                i, j = entry.row, entry.col
                if entry.matrix == 'A':
                    value = 2.0 * K[j, i] - 2.0 * Bu[i] * Bm[j]
                elif entry.matrix == 'S':
                    value = M[i, i] if i == j else 2.0 * M[i, j]
                else:
                    value = -2.0 * Bu[i]
                grad[idx] += w * value

        return total, grad

    def moment_derivatives(self, theta: np.ndarray, g: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        집단 g의 모형 적률 편미분

            ∂Σ/∂A_ij = B_.i C_j. + (B_.i C_j.)'      ∂μ/∂A_ij = B_.i (Bm)_j
            ∂Σ/∂S_ij = B_.i B_j. + (B_.i B_j.)'       ∂μ/∂m_i  = B_.i

        Returns:
            Tuple[np.ndarray, np.ndarray]: ∂Σ (k×p×p), ∂μ (k×p). 집단 g에서 추정되지 않는 파라미터는 0
        """
        A, S, mv = self.matrices(theta, g)
        p = self.layout.n_observed
        B = np.linalg.inv(np.eye(self.layout.n_variables) - A)
        C = B @ S @ B.T
        Bm = B @ mv
        Bp = B[:p]
        Cp = C[:p]

        d_sigma = np.zeros((self.n_params, p, p))
        d_mu = np.zeros((self.n_params, p))
        for entry, idx in self.group_free[g]:
            i, j = entry.row, entry.col
            if entry.matrix == 'A':
                block = np.outer(Bp[:, i], Cp[:, j])
                d_sigma[idx] += block + block.T
                d_mu[idx] += Bp[:, i] * Bm[j]
            elif entry.matrix == 'S':
                block = np.outer(Bp[:, i], Bp[:, j])
                d_sigma[idx] += block if i == j else block + block.T
            else:
                d_mu[idx] += Bp[:, i]
        return d_sigma, d_mu

    def expected_information(self, theta: np.ndarray, weights: Sequence[float]) -> np.ndarray:
        """
        ML 불일치 함수의 기대 Hessian (양반정치)

            H_ab = Σ_g w_g [tr(Σ⁻¹ ∂_aΣ Σ⁻¹ ∂_bΣ) + 2 ∂_aμ' Σ⁻¹ ∂_bμ]
        """
        information = np.zeros((self.n_params, self.n_params))
        for g, w in enumerate(weights):
            sigma, _, _ = self.implied_moments(theta, g)
            sigma_inv = np.linalg.inv(sigma)
            d_sigma, d_mu = self.moment_derivatives(theta, g)
            scaled = sigma_inv @ d_sigma
            information += w * (np.einsum('aij,bji->ab', scaled, scaled)
                                + 2.0 * d_mu @ sigma_inv @ d_mu.T)
        return (information + information.T) / 2.0


def _assign(A: np.ndarray, S: np.ndarray, mv: np.ndarray, entry: ParamEntry, value: float) -> None:
    if entry.matrix == 'A':
        A[entry.row, entry.col] = value
    elif entry.matrix == 'S':
        S[entry.row, entry.col] = value
        S[entry.col, entry.row] = value
    else:
        mv[entry.row] = value


def numerical_hessian(gradient: Callable[[np.ndarray], np.ndarray], theta: np.ndarray,
                      step: float = 1e-5) -> np.ndarray:
    """해석적 gradient의 중앙차분으로 Hessian 근사"""
    k = len(theta)
    hessian = np.zeros((k, k))
    for i in range(k):
        h = step * max(1.0, abs(theta[i]))
        plus = theta.copy()
        minus = theta.copy()
        plus[i] += h
        minus[i] -= h
        hessian[:, i] = (gradient(plus) - gradient(minus)) / (2.0 * h)
    return (hessian + hessian.T) / 2.0


class RAMFitResult:
    """RAM 모델 ML 추정 결과"""

    def __init__(self, model: RAMModel, moments: Sequence[SampleMoments], theta: np.ndarray,
                 fmin: float, n_iterations: int, message: str):
        self.model = model
        self.moments = list(moments)
        self.theta = theta
        self.fmin = fmin
        self.n_iterations = n_iterations
        self.message = message
        self._hessian = None

    @property
    def n_total(self) -> int:
        return sum(mom.n for mom in self.moments)

    @property
    def weights(self) -> List[float]:
        return [mom.n / self.n_total for mom in self.moments]

    def gradient(self, theta: np.ndarray) -> np.ndarray:
        return self.model.objective(theta, self.moments, self.weights)[1]

    @property
    def hessian(self) -> np.ndarray:
        if self._hessian is None:
            self._hessian = numerical_hessian(self.gradient, self.theta)
        return self._hessian

    def standard_errors(self) -> np.ndarray:
        """관측 정보행렬 (N/2)·H 의 역행렬로부터 표준오차"""
        information = 0.5 * self.n_total * self.hessian
        try:
            covariance = np.linalg.inv(information)
        except np.linalg.LinAlgError:
            logger.warning("정보행렬이 특이행렬이어서 표준오차를 계산할 수 없습니다")
            return np.full(self.model.n_params, np.nan)
        variances = np.diag(covariance)
        with np.errstate(invalid='ignore'):
            return np.where(variances > 0, np.sqrt(np.abs(variances)), np.nan)

    def fit_indices(self) -> Dict[str, float]:
        """카이제곱, 자유도, CFI, TLI, RMSEA, AIC, BIC, 로그우도"""
        n_total = self.n_total
        n_groups = self.model.n_groups
        p = self.model.layout.n_observed
        k = self.model.n_params

        group_f = self.model.discrepancies(self.theta, self.moments)
        chi2 = float(sum(mom.n * f for mom, f in zip(self.moments, group_f)))
        dof = int(n_groups * (p * (p + 1) // 2 + p) - k)

        loglik = float(sum(
            -0.5 * mom.n * (p * np.log(2 * np.pi) + f + mom.logdet + p)
            for mom, f in zip(self.moments, group_f)
        ))

        # 독립모형 (분산과 평균만 자유추정)
        chi2_base = float(sum(
            mom.n * (np.sum(np.log(np.diag(mom.cov))) - mom.logdet) for mom in self.moments
        ))
        dof_base = int(n_groups * p * (p - 1) // 2)

        excess = max(chi2 - dof, 0.0)
        denom = max(chi2_base - dof_base, chi2 - dof, 0.0)
        cfi = 1.0 - excess / denom if denom > 0 else 1.0

        if dof > 0 and dof_base > 0 and chi2_base / dof_base != 1.0:
            tli = ((chi2_base / dof_base) - (chi2 / dof)) / ((chi2_base / dof_base) - 1.0)
        else:
            tli = np.nan

        rmsea = float(np.sqrt(excess / (dof * n_total)) * np.sqrt(n_groups)) if dof > 0 else 0.0
        p_value = float(stats.chi2.sf(chi2, dof)) if dof > 0 else np.nan

        return {
            'chi2': chi2,
            'DoF': dof,
            'chi2 p-value': p_value,
            'CFI': float(cfi),
            'TLI': float(tli),
            'RMSEA': rmsea,
            'AIC': -2.0 * loglik + 2.0 * k,
            'BIC': -2.0 * loglik + k * np.log(n_total),
            'LogLik': loglik,
            'chi2 Baseline': chi2_base,
            'DoF Baseline': dof_base,
        }

    def parameter_table(self, compute_se: bool = True) -> pd.DataFrame:
        """
        집단별 파라미터 표

        Returns:
            pd.DataFrame: lval, op, rval, group, Estimate, Std. Err, z-value, p-value, Est. Std, free, label
        """
        se = self.standard_errors() if compute_se else np.full(self.model.n_params, np.nan)
        rows = []

        for g, group_label in enumerate(self.model.group_labels):
            _, _, C = self.model.implied_moments(self.theta, g)
            sd = np.sqrt(np.clip(np.diag(C), 0, None))
            free_index = {id(entry): idx for entry, idx in self.model.group_free[g]}
            fixed_value = {id(entry): value for entry, value in self.model.group_fixed[g]}

            for entry in self.model.layout.entries:
                if id(entry) in free_index:
                    idx = free_index[id(entry)]
                    estimate = float(self.theta[idx])
                    std_err = float(se[idx])
                    free = True
                else:
                    estimate = float(fixed_value[id(entry)])
                    std_err = np.nan
                    free = False

                rows.append({
                    'lval': entry.lval,
                    'op': entry.op,
                    'rval': entry.rval,
                    'group': group_label,
                    'Estimate': estimate,
                    'Std. Err': std_err,
                    'Est. Std': _standardize(entry, estimate, sd),
                    'free': free,
                    'label': entry.label,
                })

        table = pd.DataFrame(rows)
        with np.errstate(divide='ignore', invalid='ignore'):
            table['z-value'] = table['Estimate'] / table['Std. Err']
        table['p-value'] = 2.0 * stats.norm.sf(np.abs(table['z-value']))
        columns = ['lval', 'op', 'rval', 'group', 'Estimate', 'Std. Err', 'z-value',
                   'p-value', 'Est. Std', 'free', 'label']
        return table[columns]


def _standardize(entry: ParamEntry, estimate: float, sd: np.ndarray) -> float:
    with np.errstate(divide='ignore', invalid='ignore'):
        if entry.matrix == 'A':
            return float(estimate * sd[entry.col] / sd[entry.row])
        if entry.matrix == 'S':
            return float(estimate / (sd[entry.row] * sd[entry.col]))
        return float(estimate / sd[entry.row]) if sd[entry.row] > 0 else np.nan


def fit_ram_model(model: RAMModel, moments: Sequence[SampleMoments],
                  max_iterations: int = 1000, tolerance: float = 1e-6,
                  name: str = 'model') -> RAMFitResult:
    """
    RAM 모델 ML 추정 (L-BFGS-B, 분산 하한 제약)

    Args:
        model (RAMModel): 추정할 모델
        moments (Sequence[SampleMoments]): 집단별 표본 통계량 (model.group_labels 순서)
        max_iterations (int): 최대 반복 횟수
        tolerance (float): 수렴 판정 gradient 허용치
        name (str): 로그용 모델 이름

    Returns:
        RAMFitResult: 추정 결과
    """
    if len(moments) != model.n_groups:
        raise SpecificationError("집단 수와 표본 통계량 개수가 다릅니다")

    n_total = sum(mom.n for mom in moments)
    weights = [mom.n / n_total for mom in moments]
    theta0 = model.start_values(moments)
    bounds = model.bounds()

    logger.info(f"[{name}] ML 추정 시작: 파라미터 {model.n_params}개, 집단 {model.n_groups}개")

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        result = minimize(
            lambda th: model.objective(th, moments, weights),
            theta0,
            jac=True,
            method='L-BFGS-B',
            bounds=bounds,
            options={'maxiter': max_iterations, 'ftol': 1e-14, 'gtol': 1e-9}
        )

    fmin, grad = model.objective(result.x, moments, weights)
    projected = _projected_gradient(result.x, grad, bounds)
    max_grad = float(np.max(np.abs(projected))) if len(projected) else 0.0

    if fmin >= _INFEASIBLE or (not result.success and max_grad > max(tolerance, 1e-4)):
        logger.error(f"[{name}] 수렴 실패: {result.message} (max|gradient|={max_grad:.2e})")
        raise ConvergenceError(
            f"모델 '{name}' 추정이 수렴하지 않았습니다: {result.message}",
            n_iterations=int(result.nit),
            objective=float(fmin)
        )

    logger.info(f"[{name}] ML 추정 완료: 반복 {result.nit}회, 목적함수 {fmin:.6f}")
    return RAMFitResult(model, moments, result.x, float(fmin), int(result.nit), str(result.message))


def _projected_gradient(theta: np.ndarray, grad: np.ndarray, bounds) -> np.ndarray:
    projected = grad.copy()
    for i, (lower, upper) in enumerate(bounds):
        if lower is not None and theta[i] <= lower + 1e-10 and grad[i] > 0:
            projected[i] = 0.0
        if upper is not None and theta[i] >= upper - 1e-10 and grad[i] < 0:
            projected[i] = 0.0
    return projected
