"""
Measurement Invariance Module

집단 간 측정동일성을 configural → weak(metric) → strong(scalar) 순서로 검정합니다.
각 단계는 바로 앞 단계에 동일성 제약을 추가한 모델이며, 앞 단계가 지지되지 않으면
다음 단계의 결과는 해석하지 않습니다.

판정 기준: 카이제곱 차이 검정 p > α 이고 |ΔCFI| ≤ 0.01
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
import logging

from .config import CFAAnalysisConfig, get_default_config
from .comparison import LikelihoodRatioResult, compare_models
from .errors import InvarianceOrderError
from .fitted_model import FittedModel
from .model_spec import ModelSpecification
from .multigroup import MultigroupFitEngine

logger = logging.getLogger(__name__)


class InvarianceLevel(IntEnum):
    """측정동일성 단계 (값이 클수록 제약이 많음)"""

    CONFIGURAL = 0
    WEAK = 1
    STRONG = 2

    @property
    def group_equal(self) -> Tuple[str, ...]:
        return _GROUP_EQUAL[self]

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value: Union['InvarianceLevel', str, int]) -> 'InvarianceLevel':
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            if key not in _ALIASES:
                raise InvarianceOrderError(f"알 수 없는 측정동일성 단계: {value}")
            return _ALIASES[key]
        return cls(value)


_GROUP_EQUAL = {
    InvarianceLevel.CONFIGURAL: (),
    InvarianceLevel.WEAK: ('loadings',),
    InvarianceLevel.STRONG: ('loadings', 'intercepts'),
}

_LABELS = {
    InvarianceLevel.CONFIGURAL: 'Configural',
    InvarianceLevel.WEAK: 'Weak (metric)',
    InvarianceLevel.STRONG: 'Strong (scalar)',
}

_ALIASES = {
    'configural': InvarianceLevel.CONFIGURAL,
    'weak': InvarianceLevel.WEAK,
    'metric': InvarianceLevel.WEAK,
    'strong': InvarianceLevel.STRONG,
    'scalar': InvarianceLevel.STRONG,
}

INVARIANCE_ORDER = (InvarianceLevel.CONFIGURAL, InvarianceLevel.WEAK, InvarianceLevel.STRONG)


def validate_level_order(levels: Iterable[Union[InvarianceLevel, str, int]]) -> List[InvarianceLevel]:
    """
    단계 순서 검증: configural부터 시작해 한 단계씩 증가해야 함

    Raises:
        InvarianceOrderError: 순서가 어긋나거나 단계를 건너뛴 경우
    """
    parsed = [InvarianceLevel.parse(level) for level in levels]
    if not parsed:
        raise InvarianceOrderError("검정할 측정동일성 단계가 없습니다")

    for position, level in enumerate(parsed):
        if level != INVARIANCE_ORDER[position]:
            expected = ' → '.join(lv.name.lower() for lv in INVARIANCE_ORDER[:len(parsed)])
            requested = ' → '.join(lv.name.lower() for lv in parsed)
            raise InvarianceOrderError(
                f"측정동일성 단계는 {expected} 순서로 검정해야 합니다 (요청: {requested})"
            )
    return parsed


@dataclass(frozen=True)
class InvarianceComparison:
    """인접한 두 단계의 비교"""

    lower: InvarianceLevel
    higher: InvarianceLevel
    test: LikelihoodRatioResult
    delta_cfi_threshold: float = 0.01

    @property
    def delta_cfi(self) -> float:
        return self.test.delta_cfi

    @property
    def holds(self) -> bool:
        """higher 단계의 동일성이 지지되는지"""
        cfi_ok = np.isfinite(self.delta_cfi) and abs(self.delta_cfi) <= self.delta_cfi_threshold
        return (not self.test.significant) and cfi_ok


def compare_invariance_levels(fits: Mapping[InvarianceLevel, FittedModel],
                              levels: Optional[Sequence] = None,
                              significance_level: float = 0.05,
                              delta_cfi_threshold: float = 0.01) -> List[InvarianceComparison]:
    """
    적합된 단계별 모델을 인접 단계끼리 비교

    Args:
        fits (Mapping[InvarianceLevel, FittedModel]): 단계별 적합 모델
        levels (Optional[Sequence]): 비교 순서 (None이면 fits에 있는 단계)
        significance_level (float): 유의수준
        delta_cfi_threshold (float): |ΔCFI| 허용치

    Returns:
        List[InvarianceComparison]: configural-weak, weak-strong 순서의 비교
    """
    if levels is None:
        levels = sorted(InvarianceLevel.parse(level) for level in fits)
    levels = validate_level_order(levels)

    missing = [level.name.lower() for level in levels if level not in fits]
    if missing:
        raise InvarianceOrderError(f"적합되지 않은 단계: {missing}")

    comparisons = []
    for lower, higher in zip(levels, levels[1:]):
        test = compare_models(fits[higher], fits[lower], significance_level=significance_level)
        comparisons.append(InvarianceComparison(lower, higher, test, delta_cfi_threshold))
    return comparisons


@dataclass
class InvarianceResult:
    """측정동일성 검정 결과"""

    specification: ModelSpecification
    group_column: str
    groups: Tuple
    fits: Dict[InvarianceLevel, FittedModel]
    comparisons: List[InvarianceComparison] = field(default_factory=list)

    @property
    def group_sizes(self) -> Dict[Any, int]:
        first = next(iter(self.fits.values()))
        return dict(first.group_sizes)

    @property
    def supported_level(self) -> InvarianceLevel:
        """첫 번째로 기각된 단계 직전까지 지지된 가장 높은 단계"""
        supported = InvarianceLevel.CONFIGURAL
        for comparison in self.comparisons:
            if not comparison.holds:
                break
            supported = comparison.higher
        return supported

    def fit_table(self, keys: Sequence[str] = ('chi2', 'DoF', 'CFI', 'TLI', 'RMSEA', 'AIC', 'BIC')) -> pd.DataFrame:
        rows = []
        for level, fitted in self.fits.items():
            row = {'Level': level.label, 'Constraints': ', '.join(level.group_equal) or 'none'}
            row.update({key: fitted.fit_indices.get(key, np.nan) for key in keys})
            rows.append(row)
        return pd.DataFrame(rows)

    def comparison_table(self) -> pd.DataFrame:
        rows = []
        for comparison in self.comparisons:
            test = comparison.test
            rows.append({
                'Comparison': f"{comparison.higher.label} vs {comparison.lower.label}",
                'Δchi2': test.chi2_diff,
                'Δdf': test.df_diff,
                'p-value': test.p_value,
                'Sig': test.stars,
                'ΔCFI': comparison.delta_cfi,
                'ΔRMSEA': test.delta_rmsea,
                'Invariance holds': comparison.holds,
            })
        return pd.DataFrame(rows)


class MeasurementInvarianceTester:
    """다집단 CFA 기반 측정동일성 검정"""

    def __init__(self, config: Optional[CFAAnalysisConfig] = None,
                 engine: Optional[MultigroupFitEngine] = None):
        self.config = config if config is not None else get_default_config()
        self.engine = engine if engine is not None else MultigroupFitEngine(self.config)

    def run(self, spec: ModelSpecification, data: pd.DataFrame, group: str,
            groups: Optional[Iterable[Any]] = None,
            levels: Sequence = INVARIANCE_ORDER) -> InvarianceResult:
        """
        측정동일성 검정 실행

        Args:
            spec (ModelSpecification): 모든 집단에 적용할 모델 스펙
            data (pd.DataFrame): 그룹 변수를 포함한 데이터
            group (str): 그룹 변수
            groups (Optional[Iterable[Any]]): 비교할 그룹 값
            levels (Sequence): 검정할 단계 (configural부터 순서대로)

        Returns:
            InvarianceResult: 단계별 적합 결과와 비교
        """
        levels = validate_level_order(levels)
        groups = tuple(groups) if groups is not None else None

        logger.info(f"측정동일성 검정 시작: {spec.name}, {group}, "
                    f"단계={[level.name.lower() for level in levels]}")

        fits: Dict[InvarianceLevel, FittedModel] = {}
        for level in levels:
            if self.config.verbose:
                print(f"\n{'=' * 60}\n{level.label} invariance\n{'=' * 60}")
            fits[level] = self.engine.fit(spec, data, group, group_equal=level.group_equal,
                                          groups=groups)
            logger.info(f"{level.label}: χ²={fits[level].chi2:.3f}, df={fits[level].dof}, "
                        f"CFI={fits[level].cfi:.4f}")

        comparisons = compare_invariance_levels(
            fits, levels,
            significance_level=self.config.significance_level,
            delta_cfi_threshold=self.config.delta_cfi_threshold
        )

        first = fits[levels[0]]
        result = InvarianceResult(
            specification=spec,
            group_column=group,
            groups=first.groups,
            fits=fits,
            comparisons=comparisons,
        )
        logger.info(f"지지된 측정동일성 단계: {result.supported_level.label}")
        return result
