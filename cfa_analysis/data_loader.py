"""
Survey Data Loader Module

SPSS(.sav) 등 라벨이 있는 통계 파일을 pandas DataFrame으로 불러옵니다.
값 라벨(value label)을 적용할지, 원시 코드값을 유지할지 선택할 수 있습니다.
"""

import pandas as pd
from pathlib import Path
from typing import Dict, List, Optional, Union
import logging

import pyreadstat

from .errors import FileFormatError

logger = logging.getLogger(__name__)


class SurveyDataLoader:
    """설문 데이터 파일을 로딩하는 클래스"""

    SPSS_SUFFIXES = ('.sav', '.zsav')
    CSV_SUFFIXES = ('.csv',)

    def __init__(self, data_path: Union[str, Path]):
        """
        Survey Data Loader 초기화

        Args:
            data_path (Union[str, Path]): 데이터 파일 경로
        """
        self.data_path = Path(data_path)
        self.metadata = None
        self._validate_data_path()

    @property
    def supported_suffixes(self) -> tuple:
        return self.SPSS_SUFFIXES + self.CSV_SUFFIXES

    def _validate_data_path(self) -> None:
        """데이터 파일 유효성 검증"""
        if not self.data_path.exists():
            raise FileFormatError(f"데이터 파일을 찾을 수 없습니다: {self.data_path}")

        if not self.data_path.is_file():
            raise FileFormatError(f"경로가 파일이 아닙니다: {self.data_path}")

        if self.data_path.suffix.lower() not in self.supported_suffixes:
            raise FileFormatError(
                f"지원되지 않는 파일 형식: {self.data_path.suffix} "
                f"(지원: {', '.join(self.supported_suffixes)})"
            )

    def load(self, apply_value_labels: bool = False,
             columns: Optional[List[str]] = None) -> pd.DataFrame:
        """
        데이터 파일 로딩

        Args:
            apply_value_labels (bool): True면 값 라벨을, False면 원시 코드값을 사용
            columns (Optional[List[str]]): 불러올 컬럼 (None이면 전체)

        Returns:
            pd.DataFrame: 로딩된 데이터
        """
        suffix = self.data_path.suffix.lower()

        try:
            if suffix in self.SPSS_SUFFIXES:
                df = self._load_spss(apply_value_labels)
            else:
                df = pd.read_csv(self.data_path, encoding='utf-8-sig')
        except FileFormatError:
            raise
        except Exception as e:
            logger.error(f"데이터 로딩 실패: {self.data_path} ({e})")
            raise FileFormatError(f"파일을 읽을 수 없습니다: {self.data_path} ({e})") from e

        if columns is not None:
            missing = [col for col in columns if col not in df.columns]
            if missing:
                raise FileFormatError(f"파일에 요청한 컬럼이 없습니다: {missing}")
            df = df[list(columns)].copy()

        return self._validate_loaded_data(df)

    def _load_spss(self, apply_value_labels: bool) -> pd.DataFrame:
        """pyreadstat으로 SPSS 파일 로딩"""
        # read_sav는 압축 파일(.zsav)도 처리
        df, meta = pyreadstat.read_sav(
            str(self.data_path),
            apply_value_formats=apply_value_labels,
            formats_as_category=apply_value_labels
        )
        self.metadata = meta
        logger.info(f"SPSS 파일 로딩 완료: {self.data_path.name} "
                    f"(값 라벨 적용: {apply_value_labels})")
        return df

    def _validate_loaded_data(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        로딩된 데이터의 유효성 검증

        Args:
            df (pd.DataFrame): 검증할 데이터프레임

        Returns:
            pd.DataFrame: 검증된 데이터프레임
        """
        if df.empty or len(df.columns) == 0:
            raise FileFormatError(f"데이터가 비어있습니다: {self.data_path}")

        if df.columns.duplicated().any():
            duplicated = df.columns[df.columns.duplicated()].tolist()
            raise FileFormatError(f"중복된 컬럼 이름: {duplicated}")

        logger.info(f"데이터 로딩 완료: {df.shape}")

        missing_count = int(df.isnull().sum().sum())
        if missing_count > 0:
            logger.info(f"{missing_count}개의 결측치 발견")

        return df

    def get_variable_labels(self) -> Dict[str, str]:
        """변수 라벨 반환 (SPSS 파일을 로딩한 뒤에만 사용 가능)"""
        if self.metadata is None:
            return {}
        labels = self.metadata.column_names_to_labels or {}
        return {name: label for name, label in labels.items() if label}

    def get_value_labels(self) -> Dict[str, Dict]:
        """변수별 값 라벨 반환"""
        if self.metadata is None:
            return {}
        return dict(self.metadata.variable_value_labels or {})


def load_survey_data(data_path: Union[str, Path],
                     apply_value_labels: bool = False,
                     columns: Optional[List[str]] = None) -> pd.DataFrame:
    """
    설문 데이터를 로딩하는 편의 함수

    Args:
        data_path (Union[str, Path]): 데이터 파일 경로
        apply_value_labels (bool): 값 라벨 적용 여부
        columns (Optional[List[str]]): 불러올 컬럼

    Returns:
        pd.DataFrame: 로딩된 데이터
    """
    loader = SurveyDataLoader(data_path)
    return loader.load(apply_value_labels=apply_value_labels, columns=columns)
