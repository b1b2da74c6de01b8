"""
Text Reporter Module

적합 결과, 수정지수, 모델 비교, 측정동일성 결과를 콘솔/텍스트용 문자열로 만듭니다.
"""

import pandas as pd
import numpy as np
from typing import Dict, Iterable, List, Optional
import logging

from .config import KEY_FIT_INDICES, group_label, interpret_fit_index
from .comparison import LikelihoodRatioResult
from .data_transformer import GroupPartition
from .fitted_model import FittedModel
from .invariance import InvarianceResult

logger = logging.getLogger(__name__)

LINE_WIDTH = 60


def _banner(title: str) -> List[str]:
    return ["=" * LINE_WIDTH, title, "=" * LINE_WIDTH]


def _format_value(value) -> str:
    if value is None or (isinstance(value, float) and not np.isfinite(value)):
        return 'N/A'
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    return f"{float(value):.4f}"


def fit_indices_table(fitted: FittedModel, keys: Iterable[str] = KEY_FIT_INDICES) -> pd.DataFrame:
    """적합도 지수 표 (지수, 값, 해석)"""
    rows = []
    for key in keys:
        value = fitted.fit_indices.get(key, np.nan)
        rows.append({
            'Fit_Index': key,
            'Value': value,
            'Interpretation': interpret_fit_index(key, value),
        })
    return pd.DataFrame(rows)


def format_fit_summary(fitted: FittedModel) -> str:
    """모델 적합 요약 문자열"""
    lines = _banner(f"Model: {fitted.name}")
    lines.append(f"Sample size: {fitted.n_obs}")
    if fitted.is_multigroup:
        sizes = ', '.join(f"{group_label(g, fitted.group_column)}={n}"
                          for g, n in fitted.group_sizes.items())
        lines.append(f"Groups: {sizes}")
        lines.append(f"Equality constraints: {', '.join(fitted.group_equal) or 'none'}")
    lines.append(f"Latent variables: {', '.join(fitted.latent_variables)}")
    lines.append(f"Loadings: {fitted.n_loadings}")
    lines.append("")

    lines.append("Fit Indices:")
    for _, row in fit_indices_table(fitted).iterrows():
        interpretation = row['Interpretation']
        suffix = f" ({interpretation})" if interpretation != 'N/A' else ''
        lines.append(f"  {row['Fit_Index']:<14s}{_format_value(row['Value'])}{suffix}")
    return "\n".join(lines)


def format_loadings(fitted: FittedModel, group=None) -> str:
    """적재량 표 문자열 (다집단이면 지정한 집단)"""
    loadings = fitted.loadings
    if fitted.is_multigroup:
        group = fitted.groups[0] if group is None else group
        loadings = loadings[loadings['group'] == group]

    table = loadings[['lval', 'rval', 'Estimate', 'Std. Err', 'p-value', 'Est. Std']].rename(
        columns={'lval': 'Factor', 'rval': 'Item', 'Est. Std': 'Std. Loading'}
    )
    title = "Factor Loadings"
    if fitted.is_multigroup:
        title += f" ({group_label(group, fitted.group_column)})"
    return "\n".join([title, "-" * LINE_WIDTH, table.to_string(index=False, float_format='%.3f')])


def format_modification_indices(mi_table: pd.DataFrame, model_name: str = '') -> str:
    """수정지수 표 문자열"""
    lines = [f"Modification Indices {model_name}".rstrip(), "-" * LINE_WIDTH]
    if mi_table.empty:
        lines.append("(no candidates)")
        return "\n".join(lines)
    columns = ['relation', 'mi', 'epc']
    if mi_table['group'].notna().any():
        columns.insert(1, 'group')
    lines.append(mi_table[columns].to_string(index=False, float_format='%.3f'))
    return "\n".join(lines)


def format_comparison(result: LikelihoodRatioResult) -> str:
    """우도비 검정 결과 문자열"""
    lines = _banner(f"Likelihood Ratio Test: {result.restricted} vs {result.general}")
    lines.append(f"  {result.restricted}: χ²={result.chi2_restricted:.3f}, df={result.df_restricted}")
    lines.append(f"  {result.general}: χ²={result.chi2_general:.3f}, df={result.df_general}")
    lines.append(f"  Δχ²={result.chi2_diff:.3f}, Δdf={result.df_diff}, "
                 f"p={result.p_value:.4f} {result.stars}".rstrip())
    lines.append(f"  ΔCFI={result.delta_cfi:.4f}")
    lines.append(f"  Preferred model: {result.preferred}")
    return "\n".join(lines)


def format_partition(partition: GroupPartition) -> str:
    """그룹 분할 요약 문자열"""
    lines = [f"Groups by {partition.group_column}", "-" * LINE_WIDTH]
    for label, size in partition.sizes.items():
        lines.append(f"  {group_label(label, partition.group_column):<20s}N={size}")
    lines.append(f"  {'Total':<20s}N={partition.n_total}")
    return "\n".join(lines)


def format_invariance(result: InvarianceResult) -> str:
    """측정동일성 검정 결과 문자열"""
    lines = _banner(f"Measurement Invariance: {result.specification.name} by {result.group_column}")
    lines.append(result.fit_table().to_string(index=False, float_format='%.4f'))
    lines.append("")
    if result.comparisons:
        lines.append(result.comparison_table().to_string(index=False, float_format='%.4f'))
        lines.append("")
    lines.append(f"Supported level: {result.supported_level.label}")
    return "\n".join(lines)


def print_report(text: str) -> None:
    """콘솔 출력 + 로그"""
    print("\n" + text)
    logger.debug(text)
