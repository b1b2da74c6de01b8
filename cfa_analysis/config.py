"""
CFA Analysis Configuration Module

확인적 요인분석(CFA) 워크플로우의 분석 설정, 보고서 설정과
IMPACT 데이터에 대한 기본 모델 스펙을 관리합니다.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, Union
import logging

from .errors import SpecificationError

logger = logging.getLogger(__name__)


# =============================================================================
# IMPACT 데이터 기본값
# =============================================================================
DEFAULT_DATA_FILE = 'data/IMPACT.sav'

# 분석에 사용하는 문항 (i56 ~ i67)
IMPACT_ITEMS = [f'i{n}' for n in range(56, 68)]

GROUP_VARIABLE = 'Grade'
GROUP_VALUES = (2, 3)

MODEL_BASE_NAME = 'Model_Base'
MODEL_ADAPTED_NAME = 'Model_Adapted'

MODEL_BASE_SPEC = """
# 세 개의 잠재요인, 요인별 4문항
WTA =~ i56 + i57 + i58 + i59
INT =~ i60 + i61 + i62 + i63
SEF =~ i64 + i65 + i66 + i67
"""

# Model_Adapted = Model_Base + 교차적재 1개
MODEL_ADAPTED_EXTRA = "WTA =~ i63"


# =============================================================================
# 적합도 지수 해석 기준
# =============================================================================
# (기준값, 높을수록 좋은지 여부)
FIT_INDEX_CRITERIA = {
    'CFI': {'good': 0.95, 'acceptable': 0.90, 'higher_is_better': True},
    'TLI': {'good': 0.95, 'acceptable': 0.90, 'higher_is_better': True},
    'RMSEA': {'good': 0.05, 'acceptable': 0.08, 'higher_is_better': False},
    'SRMR': {'good': 0.05, 'acceptable': 0.08, 'higher_is_better': False},
    'GFI': {'good': 0.95, 'acceptable': 0.90, 'higher_is_better': True},
    'AGFI': {'good': 0.90, 'acceptable': 0.85, 'higher_is_better': True},
}

# 보고서에 표시할 주요 적합도 지수 순서
KEY_FIT_INDICES = ['chi2', 'DoF', 'chi2 p-value', 'CFI', 'TLI', 'RMSEA', 'AIC', 'BIC', 'LogLik']


def interpret_fit_index(index_name: str, value: float) -> str:
    """
    적합도 지수 값을 해석

    Args:
        index_name (str): 지수 이름 (CFI, TLI, RMSEA ...)
        value (float): 지수 값

    Returns:
        str: 'Good', 'Acceptable', 'Poor' 또는 기준이 없으면 'N/A'
    """
    criteria = FIT_INDEX_CRITERIA.get(index_name)
    if criteria is None or value is None:
        return 'N/A'

    if criteria['higher_is_better']:
        if value >= criteria['good']:
            return 'Good'
        if value >= criteria['acceptable']:
            return 'Acceptable'
        return 'Poor'

    if value <= criteria['good']:
        return 'Good'
    if value <= criteria['acceptable']:
        return 'Acceptable'
    return 'Poor'


@dataclass
class CFAAnalysisConfig:
    """CFA 분석 설정을 저장하는 데이터클래스"""

    # 추정 설정
    estimator: str = 'MLW'  # Maximum Likelihood with Wishart
    optimizer: str = 'SLSQP'
    max_iterations: int = 1000
    tolerance: float = 1e-6

    # 적합도/표준화 설정
    calculate_fit_indices: bool = True
    standardized: bool = True
    significance_level: float = 0.05

    # 수정지수 설정
    mi_limit: int = 10
    mi_min_value: float = 0.0

    # 측정동일성 판단 기준 (|ΔCFI| 허용치)
    delta_cfi_threshold: float = 0.01

    # 데이터 설정
    missing_data_method: str = 'listwise'  # 'listwise', 'none'

    verbose: bool = True

    def __post_init__(self):
        """초기화 후 검증"""
        valid_estimators = ['MLW', 'ML', 'GLS', 'WLS', 'ULS', 'DWLS']
        if self.estimator not in valid_estimators:
            raise ValueError(f"지원되지 않는 추정방법: {self.estimator}")

        valid_optimizers = ['SLSQP', 'L-BFGS-B', 'trust-constr']
        if self.optimizer not in valid_optimizers:
            raise ValueError(f"지원되지 않는 최적화 방법: {self.optimizer}")

        valid_missing = ['listwise', 'none']
        if self.missing_data_method not in valid_missing:
            raise ValueError(f"지원되지 않는 결측치 처리 방법: {self.missing_data_method}")

        if not 0 < self.significance_level < 1:
            raise ValueError(f"유의수준은 0과 1 사이여야 합니다: {self.significance_level}")

        if self.mi_limit is not None and self.mi_limit < 0:
            raise ValueError(f"mi_limit은 0 이상이어야 합니다: {self.mi_limit}")

        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations는 양수여야 합니다: {self.max_iterations}")


@dataclass
class ReportConfig:
    """HTML 보고서 및 그림 출력 설정"""

    output_dir: Union[str, Path] = 'results/cfa_analysis'
    title: str = 'IMPACT Confirmatory Factor Analysis'
    dpi: int = 150
    diagram_format: str = 'svg'  # svg, png
    create_diagrams: bool = True
    embed_images: bool = True
    report_filename: str = 'cfa_report.html'

    def __post_init__(self):
        if self.diagram_format not in ('svg', 'png'):
            raise ValueError(f"diagram_format은 svg 또는 png여야 합니다: {self.diagram_format}")
        self.output_dir = Path(self.output_dir)

    @property
    def report_path(self) -> Path:
        return self.output_dir / self.report_filename


def get_default_config() -> CFAAnalysisConfig:
    """기본 설정을 반환하는 편의 함수"""
    return CFAAnalysisConfig()


def create_custom_config(**kwargs) -> CFAAnalysisConfig:
    """사용자 정의 설정을 생성하는 편의 함수"""
    return CFAAnalysisConfig(**kwargs)


def get_default_rename_map(columns, prefix: str = 'i',
                           start: int = 56) -> Optional[Dict[str, str]]:
    """
    원본 문항 컬럼을 i56, i57 ... 형식으로 바꾸는 매핑 생성

    Args:
        columns: 원본 문항 컬럼 이름 (순서대로)
        prefix (str): 새 이름 접두사
        start (int): 시작 번호

    Returns:
        Optional[Dict[str, str]]: {원본명: 새이름}, 컬럼이 없으면 None
    """
    columns = list(columns)
    if not columns:
        return None
    return {old: f"{prefix}{start + i}" for i, old in enumerate(columns)}


def group_label(value, column: str = GROUP_VARIABLE) -> str:
    """그룹 값을 보고서용 라벨로 변환 (예: 2.0 → 'Grade 2')"""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return f"{column} {value}"


def split_constraints(group_equal) -> Tuple[str, ...]:
    """group_equal 인자를 정렬된 튜플로 정규화"""
    valid = ('loadings', 'intercepts')
    if group_equal is None:
        return ()
    if isinstance(group_equal, str):
        group_equal = [group_equal]
    normalized = []
    for item in group_equal:
        if item not in valid:
            raise SpecificationError(f"지원되지 않는 동일성 제약: {item} (가능: {valid})")
        if item not in normalized:
            normalized.append(item)
    return tuple(sorted(normalized, key=valid.index))
