"""
Modification Indices Module

적합된 모델에 고정(0)된 파라미터 하나를 자유추정했을 때 기대되는
카이제곱 감소량(수정지수, MI)과 기대 변화량(EPC)을 계산합니다.

    MI_j  = (N / 2) · g_j² / (H_jj - H_jf H_ff⁻¹ H_fj)
    EPC_j = -g_j / (H_jj - H_jf H_ff⁻¹ H_fj)

g는 ML 불일치 함수의 gradient, H는 기대 정보행렬(기대 Hessian)이며
f는 현재 자유 파라미터입니다.
"""

import pandas as pd
import numpy as np
from typing import Iterable, List, Optional, Tuple
import logging

from .config import CFAAnalysisConfig
from .fitted_model import FittedModel
from .multigroup import fit_single_group_ram
from .ram_model import ParamEntry, RAMFitResult, RAMLayout, RAMModel

logger = logging.getLogger(__name__)

MI_COLUMNS = ['lval', 'op', 'rval', 'group', 'mi', 'epc', 'relation']
CANDIDATE_TYPES = ('loadings', 'covariances')


def _candidate_entries(layout: RAMLayout, include: Tuple[str, ...]) -> List[ParamEntry]:
    """현재 모델에 없는 교차적재, 잔차 공분산 후보"""
    loaded = {(e.lval, e.rval) for e in layout.entries if e.kind == 'loading'}
    indicators = [name for name in layout.observed
                  if any(e.kind == 'loading' and e.rval == name for e in layout.entries)]
    candidates = []

    if 'loadings' in include:
        for latent in layout.latent:
            for indicator in indicators:
                if (latent, indicator) not in loaded:
                    candidates.append(ParamEntry('A', layout.index[indicator], layout.index[latent],
                                                 'loading', '=~', latent, indicator, start=0.0))

    if 'covariances' in include:
        for a, first in enumerate(indicators):
            for second in indicators[a + 1:]:
                if not layout.has_covariance(first, second):
                    candidates.append(ParamEntry('S', layout.index[first], layout.index[second],
                                                 'covariance', '~~', first, second))
    return candidates


def _ram_result_for(fitted: FittedModel, config: Optional[CFAAnalysisConfig]) -> RAMFitResult:
    if isinstance(fitted.native, RAMFitResult):
        return fitted.native
    # semopy로 적합한 모델은 같은 데이터로 RAM 추정을 다시 수행
    return fit_single_group_ram(fitted.specification, fitted.data, config)


def compute_modification_indices(fitted: FittedModel,
                                 sort_descending: bool = True,
                                 limit: Optional[int] = None,
                                 min_value: float = 0.0,
                                 include: Iterable[str] = CANDIDATE_TYPES,
                                 config: Optional[CFAAnalysisConfig] = None) -> pd.DataFrame:
    """
    수정지수 계산

    Args:
        fitted (FittedModel): 적합된 모델
        sort_descending (bool): True면 MI 내림차순 정렬
        limit (Optional[int]): 반환할 최대 행 수
        min_value (float): 이 값보다 작은 MI는 제외
        include (Iterable[str]): 후보 종류 ('loadings', 'covariances')
        config (Optional[CFAAnalysisConfig]): 재추정에 사용할 설정

    Returns:
        pd.DataFrame: lval, op, rval, group, mi, epc, relation
    """
    include = tuple(include)
    unknown = [item for item in include if item not in CANDIDATE_TYPES]
    if unknown:
        raise ValueError(f"지원되지 않는 수정지수 후보 종류: {unknown}")
    if limit is not None and limit < 0:
        raise ValueError(f"limit은 0 이상이어야 합니다: {limit}")

    base = _ram_result_for(fitted, config)
    candidates = _candidate_entries(base.model.layout, include)
    if not candidates:
        logger.info(f"[{fitted.name}] 수정지수 후보가 없습니다")
        return pd.DataFrame(columns=MI_COLUMNS)

    augmented = RAMModel(base.model.layout.with_entries(candidates),
                         base.model.group_labels, base.model.group_equal)
    k = base.model.n_params
    theta = np.concatenate([base.theta, np.zeros(augmented.n_params - k)])

    g = augmented.objective(theta, base.moments, base.weights)[1]
    information = augmented.expected_information(theta, base.weights)

    h_ff = information[:k, :k]
    h_fc = information[:k, k:]
    try:
        solved = np.linalg.solve(h_ff, h_fc)
    except np.linalg.LinAlgError:
        solved = np.linalg.lstsq(h_ff, h_fc, rcond=None)[0]
    schur = np.diag(information[k:, k:]) - np.sum(h_fc * solved, axis=0)

    rows = []
    unidentified = []
    for j, (entry, group_index) in enumerate(augmented.param_info[k:]):
        denom = schur[j]
        grad = g[k + j]
        relation = f"{entry.lval} {entry.op} {entry.rval}"
        if np.isfinite(denom) and denom > 1e-10:
            mi, epc = 0.5 * base.n_total * grad ** 2 / denom, -grad / denom
        else:
            # 기존 파라미터와 구별되지 않는 후보
            unidentified.append(relation)
            mi, epc = np.nan, np.nan
        group = base.model.group_labels[group_index] if group_index is not None else None
        rows.append({
            'lval': entry.lval,
            'op': entry.op,
            'rval': entry.rval,
            'group': group,
            'mi': mi,
            'epc': epc,
            'relation': relation,
        })

    if unidentified:
        logger.warning(f"[{fitted.name}] 식별되지 않는 수정지수 후보 {len(unidentified)}개 "
                       f"(MI=NaN): {unidentified}")

    table = pd.DataFrame(rows, columns=MI_COLUMNS)
    table = table[table['mi'].isna() | (table['mi'] >= min_value)]
    if sort_descending:
        table = table.sort_values('mi', ascending=False, kind='mergesort')
    if limit is not None:
        table = table.head(limit)

    logger.info(f"[{fitted.name}] 수정지수 계산 완료: 후보 {len(candidates)}개, 반환 {len(table)}개")
    return table.reset_index(drop=True)
