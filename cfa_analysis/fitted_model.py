"""
Fitted Model Module

적합된 모델(FittedModel)과 적합 옵션(FitOptions) 값 객체를 정의합니다.
단일 집단(semopy)과 다집단(RAM) 추정 결과가 같은 형태로 표현됩니다.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import split_constraints
from .model_spec import ModelSpecification


@dataclass(frozen=True)
class FitOptions:
    """
    모델 적합 옵션

    Attributes:
        group (Optional[str]): 다집단 분석에 사용할 그룹 변수 (None이면 단일 집단)
        group_equal (Tuple[str, ...]): 집단 간 동일성 제약 ('loadings', 'intercepts')
        groups (Optional[Tuple]): 사용할 그룹 값 (None이면 관측된 모든 값)
    """

    group: Optional[str] = None
    group_equal: Tuple[str, ...] = ()
    groups: Optional[Tuple] = None

    def __post_init__(self):
        object.__setattr__(self, 'group_equal', split_constraints(self.group_equal))
        if self.groups is not None:
            object.__setattr__(self, 'groups', tuple(self.groups))
        if self.group_equal and self.group is None:
            raise ValueError("group_equal 제약은 그룹 변수가 있을 때만 사용할 수 있습니다")


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    적합된 모델

    parameters 표는 엔진과 무관하게 다음 규약을 따릅니다:
        - 적재량: lval=잠재변수, op='=~', rval=지표
        - 회귀: lval=종속변수, op='~', rval=독립변수
        - 분산/공분산: op='~~'
        - 절편/평균: op='~1'
    """

    specification: ModelSpecification
    n_obs: int
    parameters: pd.DataFrame
    fit_indices: Dict[str, float]
    data: pd.DataFrame
    engine: str = 'semopy'
    native: Any = None
    group_column: Optional[str] = None
    groups: Tuple = ()
    group_sizes: Dict[Any, int] = field(default_factory=dict)
    group_equal: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.specification.name

    @property
    def is_multigroup(self) -> bool:
        return self.group_column is not None

    @property
    def latent_variables(self) -> List[str]:
        return self.specification.latent_variables

    @property
    def observed_variables(self) -> List[str]:
        return self.specification.observed_variables

    @property
    def loadings(self) -> pd.DataFrame:
        """적재량 행만 추출 (다집단이면 집단별 행 포함)"""
        return self.parameters[self.parameters['op'] == '=~'].reset_index(drop=True)

    @property
    def n_loadings(self) -> int:
        """서로 다른 (잠재변수, 지표) 적재량 쌍의 개수"""
        pairs = self.loadings[['lval', 'rval']].drop_duplicates()
        return len(pairs)

    def _index(self, key: str) -> float:
        value = self.fit_indices.get(key, np.nan)
        return float(value) if value is not None else np.nan

    @property
    def chi2(self) -> float:
        return self._index('chi2')

    @property
    def dof(self) -> int:
        value = self._index('DoF')
        return int(round(value)) if np.isfinite(value) else -1

    @property
    def cfi(self) -> float:
        return self._index('CFI')

    @property
    def rmsea(self) -> float:
        return self._index('RMSEA')

    @property
    def loglik(self) -> float:
        return self._index('LogLik')

    def loading_matrix(self, value_column: str = 'Est. Std',
                       group: Any = None) -> pd.DataFrame:
        """
        지표 × 잠재변수 적재량 행렬

        Args:
            value_column (str): 사용할 값 ('Estimate' 또는 'Est. Std')
            group (Any): 다집단 모델의 집단 (None이면 첫 번째 집단)

        Returns:
            pd.DataFrame: 행=지표, 열=잠재변수, 적재가 없는 칸은 NaN
        """
        loadings = self.loadings
        if self.is_multigroup:
            group = self.groups[0] if group is None else group
            loadings = loadings[loadings['group'] == group]
        if value_column not in loadings.columns or loadings[value_column].isna().all():
            value_column = 'Estimate'
        matrix = loadings.pivot_table(index='rval', columns='lval', values=value_column,
                                      aggfunc='first')
        indicators = [v for v in self.observed_variables if v in matrix.index]
        latents = [v for v in self.latent_variables if v in matrix.columns]
        return matrix.reindex(index=indicators, columns=latents)

    def summary_row(self, keys: Sequence[str]) -> Dict[str, Any]:
        """비교표용 한 줄 요약"""
        row = {'Model': self.name, 'N': self.n_obs}
        if self.is_multigroup:
            row['Constraints'] = ', '.join(self.group_equal) or 'none'
        for key in keys:
            row[key] = self.fit_indices.get(key, np.nan)
        return row
