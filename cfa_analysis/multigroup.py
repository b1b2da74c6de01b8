"""
Multigroup CFA Module

그룹 변수로 나눈 여러 집단에 같은 모델을 동시에 적합합니다.
집단 간 동일성 제약(적재량, 절편)을 걸 수 있으며 측정동일성 검정의 기반이 됩니다.
"""

import pandas as pd
import numpy as np
from typing import Any, Iterable, List, Optional, Sequence
import logging

from .config import CFAAnalysisConfig, get_default_config, split_constraints
from .data_transformer import partition_by_group
from .errors import ColumnNotFoundError, SpecificationError
from .fitted_model import FittedModel
from .model_spec import ModelSpecification
from .ram_model import RAMLayout, RAMModel, SampleMoments, fit_ram_model

logger = logging.getLogger(__name__)


def prepare_model_data(data: pd.DataFrame, columns: Sequence[str],
                       missing_data_method: str = 'listwise') -> pd.DataFrame:
    """
    모델 변수만 선택하고 수치형으로 정리

    Args:
        data (pd.DataFrame): 원본 데이터
        columns (Sequence[str]): 모델의 관측변수
        missing_data_method (str): 'listwise'면 결측 행 제거

    Returns:
        pd.DataFrame: 분석용 데이터
    """
    clean_data = data[list(columns)].apply(pd.to_numeric, errors='coerce')

    non_numeric = [col for col in columns
                   if clean_data[col].isna().all() and data[col].notna().any()]
    if non_numeric:
        raise SpecificationError(f"수치형이 아닌 모델 변수: {non_numeric} (값 라벨 대신 코드값을 사용하세요)")

    # 결측치 처리
    if missing_data_method == 'listwise':
        before = len(clean_data)
        clean_data = clean_data.dropna()
        if len(clean_data) < before:
            logger.info(f"결측치 제거 후 샘플 수: {before} → {len(clean_data)}")

    if clean_data.empty:
        raise SpecificationError("결측치 제거 후 분석할 데이터가 없습니다")

    # 분산이 0인 변수는 모델에서 제거할 수 없으므로 오류
    zero_var_cols = clean_data.columns[clean_data.var() == 0].tolist()
    if zero_var_cols:
        logger.warning(f"분산이 0인 변수: {zero_var_cols}")
        raise SpecificationError(f"분산이 0인 모델 변수: {zero_var_cols}")

    return clean_data


class MultigroupFitEngine:
    """RAM ML 추정 기반 다집단 적합 엔진"""

    def __init__(self, config: Optional[CFAAnalysisConfig] = None):
        self.config = config if config is not None else get_default_config()

    def fit(self, spec: ModelSpecification, data: pd.DataFrame, group: str,
            group_equal: Iterable[str] = (), groups: Optional[Iterable[Any]] = None) -> FittedModel:
        """
        다집단 모델 적합

        Args:
            spec (ModelSpecification): 모델 스펙 (모든 집단에 동일하게 적용)
            data (pd.DataFrame): 그룹 변수를 포함한 분석 데이터
            group (str): 그룹 변수
            group_equal (Iterable[str]): 동일성 제약 ('loadings', 'intercepts')
            groups (Optional[Iterable[Any]]): 사용할 그룹 값

        Returns:
            FittedModel: 적합된 다집단 모델
        """
        constraints = split_constraints(group_equal)

        if group not in data.columns:
            raise ColumnNotFoundError([group], "그룹 변수")
        spec.validate_against(data.columns)

        columns = spec.observed_variables
        subset = data[columns + [group]]
        if self.config.missing_data_method == 'listwise':
            subset = subset.dropna(subset=columns)

        partition = partition_by_group(subset, group, groups)
        if len(partition) < 2:
            raise SpecificationError(
                f"다집단 분석에는 2개 이상의 집단이 필요합니다 ({group}: {partition.labels})"
            )

        pairwise = self.config.missing_data_method == 'none'
        moments: List[SampleMoments] = []
        frames = []
        for label in partition.labels:
            clean = prepare_model_data(partition[label], columns, self.config.missing_data_method)
            moments.append(SampleMoments.from_frame(label, clean, columns, pairwise))
            frames.append(clean.assign(**{group: label}))

        constraint_text = ', '.join(constraints) if constraints else 'none'
        logger.info(f"[{spec.name}] 다집단 적합 시작: {group}={partition.labels}, "
                    f"동일성 제약={constraint_text}")
        if self.config.verbose:
            print(f"\n[다집단 적합] {spec.name} ({group}: {partition.sizes}, 제약: {constraint_text})")

        model = RAMModel(RAMLayout.from_specification(spec), partition.labels, constraints)
        result = fit_ram_model(model, moments,
                               max_iterations=self.config.max_iterations,
                               tolerance=self.config.tolerance,
                               name=spec.name)

        fit_indices = result.fit_indices() if self.config.calculate_fit_indices else {}
        parameters = result.parameter_table()

        return FittedModel(
            specification=spec,
            n_obs=result.n_total,
            parameters=parameters,
            fit_indices=fit_indices,
            data=pd.concat(frames, ignore_index=True),
            engine='ram',
            native=result,
            group_column=group,
            groups=tuple(partition.labels),
            group_sizes={mom.label: mom.n for mom in moments},
            group_equal=constraints,
        )


def fit_single_group_ram(spec: ModelSpecification, data: pd.DataFrame,
                         config: Optional[CFAAnalysisConfig] = None):
    """
    단일 집단 RAM ML 추정 (수정지수 계산용)

    Returns:
        RAMFitResult: 추정 결과
    """
    config = config if config is not None else get_default_config()
    columns = spec.observed_variables
    clean = prepare_model_data(data, columns, config.missing_data_method)
    pairwise = config.missing_data_method == 'none'
    moments = [SampleMoments.from_frame(None, clean, columns, pairwise)]
    model = RAMModel(RAMLayout.from_specification(spec))
    return fit_ram_model(model, moments, max_iterations=config.max_iterations,
                         tolerance=config.tolerance, name=spec.name)
