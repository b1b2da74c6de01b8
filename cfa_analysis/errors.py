"""
CFA Analysis Error Module

분석 단계별 예외 클래스를 정의합니다.
모든 예외는 발생 지점에서 즉시 호출자에게 전달되며, 재시도나 복구는 하지 않습니다.
"""

from typing import Iterable


class CFAAnalysisError(Exception):
    """cfa_analysis 패키지의 최상위 예외"""


class FileFormatError(CFAAnalysisError):
    """입력 파일을 읽을 수 없거나 형식/스키마가 맞지 않을 때"""


class ColumnNotFoundError(CFAAnalysisError, KeyError):
    """rename/filter/모델 스펙이 데이터에 없는 변수를 참조할 때"""

    def __init__(self, columns: Iterable[str], context: str = ""):
        self.columns = list(columns)
        self.context = context
        message = f"데이터에 없는 컬럼: {self.columns}"
        if context:
            message = f"{context} - {message}"
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError는 메시지를 repr로 감싸므로 원문 그대로 반환
        return self.args[0]


class SpecificationError(CFAAnalysisError, ValueError):
    """모델 스펙 문법 오류 또는 스펙 구성 오류"""


class MissingDataError(CFAAnalysisError, ValueError):
    """결측치 처리 방법으로는 표본 통계량을 계산할 수 없을 때"""


class ConvergenceError(CFAAnalysisError, RuntimeError):
    """SEM 최적화가 수렴하지 않았을 때"""

    def __init__(self, message: str, n_iterations=None, objective=None):
        self.n_iterations = n_iterations
        self.objective = objective
        super().__init__(message)


class ComparisonError(CFAAnalysisError, ValueError):
    """중첩(nested) 관계가 아닌 모델을 비교하려 할 때"""


class InvarianceOrderError(ComparisonError):
    """측정동일성 비교 순서(configural → weak → strong)를 어겼을 때"""
