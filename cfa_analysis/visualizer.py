"""
CFA Visualizer Module

경로 다이어그램(graphviz / semopy semplot)과 적재량 히트맵, 적합도 지수 그래프를 생성합니다.
Graphviz 실행 파일이 없으면 DOT 소스만 저장합니다.
"""

import shutil
from pathlib import Path
from typing import Dict, Optional, Union
import logging

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns
import graphviz

from semopy import semplot

from .config import FIT_INDEX_CRITERIA, group_label
from .fitted_model import FittedModel

# 한글 폰트 설정
plt.rcParams['font.family'] = ['Malgun Gothic', 'DejaVu Sans']
plt.rcParams['axes.unicode_minus'] = False

logger = logging.getLogger(__name__)


def graphviz_executable_available() -> bool:
    """Graphviz dot 실행 파일 존재 여부"""
    return shutil.which('dot') is not None


def build_path_diagram(fitted: FittedModel, std_ests: bool = True, plot_covs: bool = False,
                       group=None, latshape: str = 'circle') -> graphviz.Digraph:
    """
    적합된 모델의 경로 다이어그램 생성 (렌더링 전 Digraph)

    Args:
        fitted (FittedModel): 적합된 모델
        std_ests (bool): 표준화 추정값 표시 여부
        plot_covs (bool): 잠재변수 간 공분산 표시 여부
        group: 다집단 모델의 집단 (None이면 첫 번째 집단)
        latshape (str): 잠재변수 모양

    Returns:
        graphviz.Digraph: 다이어그램
    """
    params = fitted.parameters
    if fitted.is_multigroup:
        group = fitted.groups[0] if group is None else group
        params = params[params['group'] == group]

    value_column = 'Est. Std' if std_ests and params['Est. Std'].notna().any() else 'Estimate'

    dot = graphviz.Digraph(name=fitted.name, format='svg')
    dot.attr(rankdir='LR', label=fitted.name, labelloc='t')

    latent = fitted.latent_variables
    for name in latent:
        dot.node(name, name, shape=latshape, style='filled', fillcolor='#dbe9f6')
    for name in fitted.observed_variables:
        dot.node(name, name, shape='box')

    def _label(row) -> str:
        value = row[value_column]
        if not np.isfinite(value):
            return ''
        stars = ''
        if np.isfinite(row['p-value']):
            stars = '*' if row['p-value'] < 0.05 else ''
        return f"{value:.2f}{stars}"

    for _, row in params[params['op'] == '=~'].iterrows():
        dot.edge(row['lval'], row['rval'], label=_label(row))
    for _, row in params[params['op'] == '~'].iterrows():
        dot.edge(row['rval'], row['lval'], label=_label(row))

    if plot_covs:
        covs = params[(params['op'] == '~~') & (params['lval'] != params['rval'])]
        for _, row in covs.iterrows():
            if row['lval'] in latent and row['rval'] in latent:
                dot.edge(row['lval'], row['rval'], label=_label(row), dir='both', style='dashed')

    return dot


def create_sem_diagram(fitted: FittedModel, filename: Union[str, Path],
                       fmt: str = 'svg', std_ests: bool = True, plot_covs: bool = False,
                       engine: str = 'dot', latshape: str = 'circle',
                       dot_only: bool = False) -> Path:
    """
    경로 다이어그램 파일 생성

    semopy로 적합한 단일 집단 모델은 semplot을, 그 외에는 build_path_diagram을 사용합니다.
    Graphviz 실행 파일이 없으면 DOT 파일만 저장합니다.

    Args:
        fitted (FittedModel): 적합된 모델
        filename (Union[str, Path]): 저장할 파일명 (확장자 제외)
        fmt (str): 'svg' 또는 'png'
        std_ests (bool): 표준화 추정값 사용 여부
        plot_covs (bool): 공분산 표시 여부
        engine (str): graphviz 엔진
        latshape (str): 잠재변수 모양
        dot_only (bool): DOT 파일만 생성

    Returns:
        Path: 생성된 파일 경로
    """
    filepath = Path(filename)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    if not dot_only and not graphviz_executable_available():
        logger.warning("Graphviz 실행 파일을 찾을 수 없습니다. DOT 파일만 생성합니다.")
        dot_only = True

    if dot_only:
        dot_path = filepath.with_suffix('.dot')
        digraph = build_path_diagram(fitted, std_ests=std_ests, plot_covs=plot_covs,
                                     latshape=latshape)
        dot_path.write_text(digraph.source, encoding='utf-8')
        logger.info(f"DOT 파일 생성 완료: {dot_path}")
        return dot_path

    output_path = filepath.with_suffix(f'.{fmt}')
    if fitted.engine == 'semopy' and fitted.native is not None:
        semplot(
            fitted.native,
            str(output_path),
            plot_covs=plot_covs,
            std_ests=std_ests,
            engine=engine,
            latshape=latshape,
            show=False
        )
    else:
        digraph = build_path_diagram(fitted, std_ests=std_ests, plot_covs=plot_covs,
                                     latshape=latshape)
        digraph.engine = engine
        digraph.render(filename=filepath.name, directory=str(filepath.parent),
                       format=fmt, cleanup=True)

    logger.info(f"SEM 다이어그램 생성 완료: {output_path}")
    return output_path


def plot_loading_heatmap(fitted: FittedModel, group=None,
                         value_column: str = 'Est. Std') -> plt.Figure:
    """지표 × 잠재변수 표준화 적재량 히트맵"""
    matrix = fitted.loading_matrix(value_column=value_column, group=group)

    fig, ax = plt.subplots(figsize=(1.6 * max(len(matrix.columns), 2) + 2,
                                    0.45 * max(len(matrix.index), 4) + 1.5))
    sns.heatmap(matrix.astype(float), annot=True, fmt='.2f', cmap='RdBu_r', center=0,
                vmin=-1, vmax=1, linewidths=0.5, cbar_kws={'label': 'Loading'}, ax=ax)

    title = f"Factor Loadings: {fitted.name}"
    if fitted.is_multigroup:
        group = fitted.groups[0] if group is None else group
        title += f" ({group_label(group, fitted.group_column)})"
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.set_xlabel('Factor')
    ax.set_ylabel('Item')
    fig.tight_layout()
    return fig


def plot_fit_indices(models: Dict[str, FittedModel],
                     indices=('CFI', 'TLI', 'RMSEA')) -> plt.Figure:
    """여러 모델의 적합도 지수 막대 그래프 (기준선 포함)"""
    records = []
    for label, fitted in models.items():
        for index in indices:
            records.append({'Model': label, 'Index': index,
                            'Value': fitted.fit_indices.get(index, np.nan)})
    frame = pd.DataFrame(records)

    fig, axes = plt.subplots(1, len(indices), figsize=(4 * len(indices), 4))
    axes = np.atleast_1d(axes)
    palette = sns.color_palette('Set2', n_colors=max(len(models), 1))

    for ax, index in zip(axes, indices):
        subset = frame[frame['Index'] == index]
        sns.barplot(data=subset, x='Model', y='Value', hue='Model', palette=palette,
                    legend=False, ax=ax)
        criteria = FIT_INDEX_CRITERIA.get(index)
        if criteria:
            ax.axhline(criteria['good'], color='green', linestyle='--', linewidth=1)
            ax.axhline(criteria['acceptable'], color='orange', linestyle=':', linewidth=1)
        ax.set_title(index, fontweight='bold')
        ax.set_xlabel('')
        ax.tick_params(axis='x', rotation=30)

    fig.tight_layout()
    return fig
