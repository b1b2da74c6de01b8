"""
Data Transformer Module

컬럼 이름 변경, 값 재코딩, 행 필터링, 그룹 분할 기능을 제공합니다.
모든 함수는 입력 DataFrame을 수정하지 않고 새로운 DataFrame을 반환합니다.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union
import logging

from .errors import ColumnNotFoundError

logger = logging.getLogger(__name__)

Predicate = Union[Callable[[pd.DataFrame], pd.Series], Mapping[str, Any]]


def _check_columns(data: pd.DataFrame, columns: Iterable[str], context: str) -> None:
    missing = [col for col in columns if col not in data.columns]
    if missing:
        raise ColumnNotFoundError(missing, context)


def rename_columns(data: pd.DataFrame, mapping: Mapping[str, str]) -> pd.DataFrame:
    """
    컬럼 이름 변경

    Args:
        data (pd.DataFrame): 원본 데이터
        mapping (Mapping[str, str]): {기존 이름: 새 이름}

    Returns:
        pd.DataFrame: 이름이 바뀐 새 데이터
    """
    _check_columns(data, mapping.keys(), "rename")

    # 변경되지 않는 컬럼과 새 이름이 겹치면 안 됨
    untouched = set(data.columns) - set(mapping.keys())
    collisions = sorted(set(mapping.values()) & untouched)
    if collisions:
        raise ValueError(f"새 컬럼 이름이 기존 컬럼과 겹칩니다: {collisions}")

    if len(set(mapping.values())) != len(mapping):
        raise ValueError("새 컬럼 이름에 중복이 있습니다")

    renamed = data.rename(columns=dict(mapping))
    logger.info(f"컬럼 이름 변경 완료: {len(mapping)}개")
    return renamed


def recode_values(data: pd.DataFrame, column: str,
                  mapping: Mapping[Any, Any]) -> pd.DataFrame:
    """
    단일 컬럼 값 재코딩 (매핑에 없는 값은 그대로 유지)

    Args:
        data (pd.DataFrame): 원본 데이터
        column (str): 재코딩할 컬럼
        mapping (Mapping[Any, Any]): {기존 값: 새 값}

    Returns:
        pd.DataFrame: 재코딩된 새 데이터
    """
    _check_columns(data, [column], "recode")

    recoded = data.copy()
    recoded[column] = recoded[column].map(lambda v: mapping.get(v, v) if pd.notna(v) else v)
    return recoded


def select_columns(data: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """지정한 컬럼만 선택"""
    columns = list(columns)
    _check_columns(data, columns, "select")
    return data[columns].copy()


def _predicate_mask(data: pd.DataFrame, predicate: Predicate) -> pd.Series:
    if callable(predicate):
        mask = predicate(data)
        if not isinstance(mask, pd.Series):
            mask = pd.Series(np.asarray(mask, dtype=bool), index=data.index)
        return mask.fillna(False).astype(bool)

    _check_columns(data, predicate.keys(), "filter")

    mask = pd.Series(True, index=data.index)
    for column, allowed in predicate.items():
        if pd.api.types.is_list_like(allowed):
            mask &= data[column].isin(list(allowed))
        else:
            mask &= data[column] == allowed
    return mask


def filter_rows(data: pd.DataFrame, predicate: Predicate) -> pd.DataFrame:
    """
    조건에 맞는 행만 남김 (컬럼 구성은 유지)

    Args:
        data (pd.DataFrame): 원본 데이터
        predicate (Predicate): DataFrame을 받아 bool Series를 반환하는 함수,
            또는 {컬럼: 허용값 또는 허용값 목록} 딕셔너리

    Returns:
        pd.DataFrame: 필터링된 새 데이터
    """
    try:
        mask = _predicate_mask(data, predicate)
    except KeyError as e:
        if isinstance(e, ColumnNotFoundError):
            raise
        raise ColumnNotFoundError([e.args[0]], "filter") from e

    filtered = data.loc[mask].copy()
    logger.info(f"행 필터링: {len(data)} → {len(filtered)}")
    return filtered


@dataclass(frozen=True)
class GroupPartition:
    """그룹 변수 값으로 나눈 데이터 분할 (서로소, 전체 포괄)"""

    group_column: str
    groups: Dict[Any, pd.DataFrame] = field(default_factory=dict)

    @property
    def labels(self) -> List[Any]:
        return list(self.groups.keys())

    @property
    def sizes(self) -> Dict[Any, int]:
        return {label: len(frame) for label, frame in self.groups.items()}

    @property
    def n_total(self) -> int:
        return sum(self.sizes.values())

    def __len__(self) -> int:
        return len(self.groups)

    def __getitem__(self, label) -> pd.DataFrame:
        return self.groups[label]

    def combined(self) -> pd.DataFrame:
        """모든 그룹을 다시 하나의 DataFrame으로 결합"""
        if not self.groups:
            return pd.DataFrame()
        return pd.concat(list(self.groups.values()))

    def summary(self) -> pd.DataFrame:
        return pd.DataFrame({
            'Group': [str(label) for label in self.labels],
            'N': [self.sizes[label] for label in self.labels],
        })


def partition_by_group(data: pd.DataFrame, group_column: str,
                       values: Optional[Iterable[Any]] = None) -> GroupPartition:
    """
    그룹 변수로 데이터를 분할

    Args:
        data (pd.DataFrame): 원본 데이터
        group_column (str): 그룹 변수
        values (Optional[Iterable[Any]]): 사용할 그룹 값 (None이면 관측된 모든 값)

    Returns:
        GroupPartition: 그룹별 데이터
    """
    _check_columns(data, [group_column], "partition")

    subset = data[data[group_column].notna()]
    if values is not None:
        values = list(values)
        subset = filter_rows(subset, {group_column: values})
        ordered = [v for v in values if (subset[group_column] == v).any()]
    else:
        ordered = sorted(subset[group_column].unique().tolist(), key=str)

    groups = {value: subset[subset[group_column] == value].copy() for value in ordered}

    partition = GroupPartition(group_column=group_column, groups=groups)
    logger.info(f"그룹 분할 완료 ({group_column}): {partition.sizes}")
    return partition
