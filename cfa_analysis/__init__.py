"""
CFA Analysis 패키지

IMPACT 설문 데이터에 대한 확인적 요인분석(CFA) 워크플로우를 제공합니다.
SPSS 파일을 불러와 전처리한 뒤, 모델 스펙을 정의하고 semopy로 적합하며,
수정지수, 중첩 모델 비교, 집단 간 측정동일성 검정 결과를 HTML 보고서로 정리합니다.

Author: Sugar Substitute Research Team
Date: 2025-10-17
"""

from .errors import (
    CFAAnalysisError,
    FileFormatError,
    ColumnNotFoundError,
    SpecificationError,
    MissingDataError,
    ConvergenceError,
    ComparisonError,
    InvarianceOrderError
)
from .config import (
    CFAAnalysisConfig,
    ReportConfig,
    get_default_config,
    create_custom_config,
    interpret_fit_index,
    MODEL_BASE_SPEC,
    MODEL_ADAPTED_EXTRA
)
from .data_loader import SurveyDataLoader, load_survey_data
from .data_transformer import (
    rename_columns,
    recode_values,
    select_columns,
    filter_rows,
    partition_by_group,
    GroupPartition
)
from .model_spec import (
    RelationKind,
    Term,
    Relation,
    ModelSpecification,
    ModelSpecStore,
    parse_relations,
    extend_specification,
    create_cfa_spec
)
from .fitted_model import FitOptions, FittedModel
from .fit_engine import SemopyFitEngine, FitSummary, fit_model, summarize
from .multigroup import MultigroupFitEngine
from .modification_indices import compute_modification_indices
from .comparison import (
    LikelihoodRatioResult,
    check_nesting,
    compare_models,
    compare_model_table,
    likelihood_ratio_test
)
from .invariance import (
    InvarianceLevel,
    InvarianceResult,
    MeasurementInvarianceTester,
    compare_invariance_levels
)
from .report_builder import CFAReport
from .results_exporter import CFAResultsExporter
from .workflow import AnalysisRun, CFAWorkflow

__version__ = "1.0.0"
__author__ = "Sugar Substitute Research Team"

__all__ = [
    # Errors
    'CFAAnalysisError',
    'FileFormatError',
    'ColumnNotFoundError',
    'SpecificationError',
    'MissingDataError',
    'ConvergenceError',
    'ComparisonError',
    'InvarianceOrderError',

    # Configuration
    'CFAAnalysisConfig',
    'ReportConfig',
    'get_default_config',
    'create_custom_config',
    'interpret_fit_index',
    'MODEL_BASE_SPEC',
    'MODEL_ADAPTED_EXTRA',

    # Data loading / transformation
    'SurveyDataLoader',
    'load_survey_data',
    'rename_columns',
    'recode_values',
    'select_columns',
    'filter_rows',
    'partition_by_group',
    'GroupPartition',

    # Model specification
    'RelationKind',
    'Term',
    'Relation',
    'ModelSpecification',
    'ModelSpecStore',
    'parse_relations',
    'extend_specification',
    'create_cfa_spec',

    # Fitting
    'FitOptions',
    'FittedModel',
    'SemopyFitEngine',
    'FitSummary',
    'fit_model',
    'summarize',
    'MultigroupFitEngine',
    'compute_modification_indices',

    # Comparison / invariance
    'LikelihoodRatioResult',
    'check_nesting',
    'compare_models',
    'compare_model_table',
    'likelihood_ratio_test',
    'InvarianceLevel',
    'InvarianceResult',
    'MeasurementInvarianceTester',
    'compare_invariance_levels',

    # Output
    'CFAReport',
    'CFAResultsExporter',
    'AnalysisRun',
    'CFAWorkflow',
]
