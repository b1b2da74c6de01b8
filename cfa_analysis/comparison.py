"""
Nested Model Comparison Module (Likelihood Ratio Test)

중첩(nested) 모델 간 카이제곱 차이 검정(우도비 검정)을 수행합니다.
    LR = χ²_restricted - χ²_general = -2 · (LL_restricted - LL_general)
    LR ~ Chi-square(df = df_restricted - df_general)
"""

import pandas as pd
import numpy as np
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Tuple
import logging

from scipy import stats

from .errors import ComparisonError
from .fitted_model import FittedModel

logger = logging.getLogger(__name__)


def likelihood_ratio_test(ll_restricted: float, ll_unrestricted: float,
                          df_diff: int) -> Tuple[float, float]:
    """
    우도비 검정

    Args:
        ll_restricted: 제약 모델의 Log-Likelihood
        ll_unrestricted: 비제약 모델의 Log-Likelihood
        df_diff: 자유도 차이 (파라미터 개수 차이)

    Returns:
        lr_stat: LR 통계량
        p_value: p-value
    """
    if df_diff <= 0:
        raise ComparisonError(f"자유도 차이는 양수여야 합니다: {df_diff}")
    lr_stat = -2 * (ll_restricted - ll_unrestricted)
    p_value = float(stats.chi2.sf(max(lr_stat, 0.0), df_diff))
    return float(lr_stat), p_value


def significance_stars(p_value: float) -> str:
    """유의성 표시: *** p<0.001, ** p<0.01, * p<0.05"""
    if p_value is None or not np.isfinite(p_value):
        return ''
    if p_value < 0.001:
        return '***'
    if p_value < 0.01:
        return '**'
    if p_value < 0.05:
        return '*'
    return ''


@dataclass(frozen=True)
class LikelihoodRatioResult:
    """중첩 모델 비교 결과"""

    restricted: str
    general: str
    chi2_restricted: float
    chi2_general: float
    df_restricted: int
    df_general: int
    chi2_diff: float
    df_diff: int
    p_value: float
    delta_cfi: float
    delta_rmsea: float
    aic_restricted: float
    aic_general: float
    significance_level: float = 0.05

    @property
    def significant(self) -> bool:
        """True면 제약 모델이 유의하게 더 나쁨 (일반 모델 선호)"""
        return self.p_value < self.significance_level

    @property
    def stars(self) -> str:
        return significance_stars(self.p_value)

    @property
    def preferred(self) -> str:
        return self.general if self.significant else self.restricted

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['significant'] = self.significant
        result['preferred'] = self.preferred
        return result


def check_nesting(restricted: FittedModel, general: FittedModel) -> str:
    """
    restricted가 general에 중첩되는지 확인

    중첩 조건 (둘 중 하나):
        - 스펙 중첩: restricted의 파라미터 집합이 general의 진부분집합이고 제약이 같음
        - 제약 중첩: 스펙이 같고 restricted의 동일성 제약이 general의 진상위집합

    Returns:
        str: 'specification' 또는 'constraints'

    Raises:
        ComparisonError: 중첩 관계가 아니거나 같은 데이터로 적합되지 않은 경우
    """
    if restricted.n_obs != general.n_obs:
        raise ComparisonError(
            f"표본 수가 다른 모델은 비교할 수 없습니다: "
            f"{restricted.name}(N={restricted.n_obs}) vs {general.name}(N={general.n_obs})"
        )

    if restricted.group_column != general.group_column or restricted.groups != general.groups:
        raise ComparisonError(
            f"집단 구성이 다른 모델은 비교할 수 없습니다: {restricted.name} vs {general.name}"
        )

    restricted_params = restricted.specification.parameter_set()
    general_params = general.specification.parameter_set()
    restricted_eq = set(restricted.group_equal)
    general_eq = set(general.group_equal)

    if restricted_params == general_params and general_eq < restricted_eq:
        return 'constraints'
    if restricted_params < general_params and restricted_eq == general_eq:
        return 'specification'

    raise ComparisonError(
        f"'{restricted.name}'은(는) '{general.name}'에 중첩된 모델이 아닙니다"
    )


def compare_models(restricted: FittedModel, general: FittedModel,
                   significance_level: float = 0.05) -> LikelihoodRatioResult:
    """
    중첩 모델 카이제곱 차이 검정

    Args:
        restricted (FittedModel): 제약(단순) 모델
        general (FittedModel): 일반(복잡) 모델
        significance_level (float): 유의수준

    Returns:
        LikelihoodRatioResult: 비교 결과
    """
    kind = check_nesting(restricted, general)

    df_diff = restricted.dof - general.dof
    if df_diff <= 0:
        raise ComparisonError(
            f"제약 모델의 자유도가 더 커야 합니다: {restricted.name}(df={restricted.dof}) "
            f"vs {general.name}(df={general.dof})"
        )

    # χ² 차이는 -2 · (LL_restricted - LL_general)과 같음
    chi2_diff = restricted.chi2 - general.chi2
    _, p_value = likelihood_ratio_test(-chi2_diff / 2.0, 0.0, df_diff)

    result = LikelihoodRatioResult(
        restricted=restricted.name if kind == 'specification' else _constraint_name(restricted),
        general=general.name if kind == 'specification' else _constraint_name(general),
        chi2_restricted=restricted.chi2,
        chi2_general=general.chi2,
        df_restricted=restricted.dof,
        df_general=general.dof,
        chi2_diff=float(chi2_diff),
        df_diff=int(df_diff),
        p_value=p_value,
        delta_cfi=restricted.cfi - general.cfi,
        delta_rmsea=restricted.rmsea - general.rmsea,
        aic_restricted=restricted.fit_indices.get('AIC', np.nan),
        aic_general=general.fit_indices.get('AIC', np.nan),
        significance_level=significance_level,
    )

    logger.info(f"모델 비교 {result.restricted} vs {result.general}: "
                f"Δχ²={chi2_diff:.3f}, Δdf={df_diff}, p={p_value:.4f}")
    return result


def _constraint_name(fitted: FittedModel) -> str:
    constraints = '+'.join(fitted.group_equal) if fitted.group_equal else 'none'
    return f"{fitted.name} [{constraints}]"


def compare_model_table(results: Iterable[LikelihoodRatioResult]) -> pd.DataFrame:
    """비교 결과 목록을 표로 정리"""
    rows = []
    for result in results:
        rows.append({
            'Restricted': result.restricted,
            'General': result.general,
            'chi2 (restricted)': result.chi2_restricted,
            'chi2 (general)': result.chi2_general,
            'Δchi2': result.chi2_diff,
            'Δdf': result.df_diff,
            'p-value': result.p_value,
            'ΔCFI': result.delta_cfi,
            'Sig': result.stars,
            'Preferred': result.preferred,
        })
    return pd.DataFrame(rows)
