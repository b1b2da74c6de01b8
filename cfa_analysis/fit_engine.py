"""
CFA Fit Engine Module using semopy

이 모듈은 semopy를 사용하여 확인적 요인분석(CFA) 모델을 적합하고
파라미터 추정치와 적합도 지수를 FittedModel로 정리합니다.
그룹 변수가 지정되면 다집단 추정(MultigroupFitEngine)으로 위임합니다.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging
import warnings

# semopy 임포트
try:
    from semopy import Model
    from semopy.stats import calc_stats
except ImportError as e:
    logging.error("semopy 라이브러리를 찾을 수 없습니다. pip install semopy로 설치해주세요.")
    raise e

from .config import CFAAnalysisConfig, get_default_config
from .errors import ConvergenceError, SpecificationError
from .fitted_model import FitOptions, FittedModel
from .model_spec import ModelSpecification
from .multigroup import MultigroupFitEngine, prepare_model_data

logger = logging.getLogger(__name__)

# semopy 목적함수 이름
_SEMOPY_OBJECTIVES = {'ML': 'MLW', 'MLW': 'MLW', 'GLS': 'GLS', 'WLS': 'WLS',
                      'ULS': 'ULS', 'DWLS': 'DWLS'}

PARAMETER_COLUMNS = ['lval', 'op', 'rval', 'group', 'Estimate', 'Std. Err',
                     'z-value', 'p-value', 'Est. Std', 'free', 'label']


class SemopyFitEngine:
    """semopy를 사용한 CFA 적합 엔진"""

    def __init__(self, config: Optional[CFAAnalysisConfig] = None):
        """
        Semopy Fit Engine 초기화

        Args:
            config (Optional[CFAAnalysisConfig]): 분석 설정
        """
        self.config = config if config is not None else get_default_config()
        self.multigroup = MultigroupFitEngine(self.config)

    def fit(self, spec: ModelSpecification, data: pd.DataFrame,
            options: Optional[FitOptions] = None) -> FittedModel:
        """
        모델을 적합하고 FittedModel을 반환

        Args:
            spec (ModelSpecification): 모델 스펙
            data (pd.DataFrame): 분석 데이터
            options (Optional[FitOptions]): 그룹 변수, 동일성 제약

        Returns:
            FittedModel: 적합된 모델
        """
        options = options if options is not None else FitOptions()

        if options.group is not None:
            return self.multigroup.fit(spec, data, options.group,
                                       group_equal=options.group_equal,
                                       groups=options.groups)

        spec.validate_against(data.columns)
        clean_data = prepare_model_data(data, spec.observed_variables,
                                        self.config.missing_data_method)

        logger.info(f"[{spec.name}] semopy 모델 적합 시작 (N={len(clean_data)})")
        model = Model(spec.to_semopy())

        if self.config.verbose:
            print(f"\n[SEM 최적화 시작] {spec.name}: solver={self.config.optimizer}")

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = model.fit(
                clean_data,
                obj=_SEMOPY_OBJECTIVES[self.config.estimator],
                solver=self.config.optimizer
            )

        self._check_convergence(result, spec.name)

        parameters = self._format_parameters(spec, model)
        fit_indices = self._collect_fit_indices(model) if self.config.calculate_fit_indices else {}

        logger.info(f"[{spec.name}] 모델 적합 완료")
        return FittedModel(
            specification=spec,
            n_obs=len(clean_data),
            parameters=parameters,
            fit_indices=fit_indices,
            data=clean_data,
            engine='semopy',
            native=model,
        )

    def _check_convergence(self, result: Any, model_name: str) -> None:
        """semopy SolverResult의 수렴 여부 확인"""
        success = getattr(result, 'success', True)
        n_it = getattr(result, 'n_it', getattr(result, 'nit', None))
        fun = getattr(result, 'fun', None)

        if self.config.verbose:
            print(f"[SEM 최적화 완료] 반복 횟수: {n_it}, 수렴 여부: {success}")

        if not success:
            message = getattr(result, 'message', '')
            logger.error(f"[{model_name}] 수렴 실패: {message}")
            raise ConvergenceError(
                f"모델 '{model_name}' 추정이 수렴하지 않았습니다: {message}",
                n_iterations=n_it,
                objective=fun
            )
        logger.info(f"[{model_name}] 반복 횟수: {n_it}, 목적함수 값: {fun}")

    def _format_parameters(self, spec: ModelSpecification, model: Model) -> pd.DataFrame:
        """
        semopy inspect 결과를 공통 파라미터 표로 변환

        semopy는 적재량을 '지표 ~ 잠재변수'로 표시하므로 '잠재변수 =~ 지표'로 되돌립니다.
        """
        params = model.inspect(std_est=self.config.standardized)
        loading_pairs = set(spec.loadings)

        rows = []
        for _, row in params.iterrows():
            lval, op, rval = row['lval'], row['op'], row['rval']
            if op == '~' and (rval, lval) in loading_pairs:
                lval, op, rval = rval, '=~', lval
            rows.append({
                'lval': lval,
                'op': op,
                'rval': rval,
                'group': None,
                'Estimate': row.get('Estimate'),
                'Std. Err': row.get('Std. Err'),
                'z-value': row.get('z-value'),
                'p-value': row.get('p-value'),
                'Est. Std': row.get('Est. Std', np.nan),
                'label': None,
            })

        table = pd.DataFrame(rows, columns=PARAMETER_COLUMNS)
        for col in ['Estimate', 'Std. Err', 'z-value', 'p-value', 'Est. Std']:
            # semopy는 고정 파라미터에 '-'를 표시
            table[col] = pd.to_numeric(table[col], errors='coerce')
        table['free'] = table['Std. Err'].notna()

        # 표에 없는 적재량은 1로 고정된 기준 지표
        present = set(zip(table.loc[table['op'] == '=~', 'lval'],
                          table.loc[table['op'] == '=~', 'rval']))
        missing = [pair for pair in spec.loadings if pair not in present]
        if missing:
            extra = pd.DataFrame([{
                'lval': latent, 'op': '=~', 'rval': indicator, 'group': None,
                'Estimate': 1.0, 'free': False
            } for latent, indicator in missing], columns=PARAMETER_COLUMNS)
            table = pd.concat([table, extra], ignore_index=True)

        return table

    def _collect_fit_indices(self, model: Model) -> Dict[str, float]:
        """calc_stats 결과를 {지수: 값} 딕셔너리로 변환"""
        try:
            stats = calc_stats(model)
        except Exception as e:
            logger.warning(f"적합도 지수 계산 실패: {e}")
            return {}

        fit_indices = {}
        for key in stats.columns:
            value = stats[key]
            # pandas Series인 경우 첫 번째 값 추출
            if hasattr(value, 'iloc'):
                value = value.iloc[0]
            try:
                fit_indices[key] = float(value)
            except (TypeError, ValueError):
                continue
        return fit_indices


def fit_model(spec: ModelSpecification, data: pd.DataFrame,
              options: Optional[FitOptions] = None,
              config: Optional[CFAAnalysisConfig] = None) -> FittedModel:
    """
    모델 적합 편의 함수

    Args:
        spec (ModelSpecification): 모델 스펙
        data (pd.DataFrame): 분석 데이터
        options (Optional[FitOptions]): 적합 옵션
        config (Optional[CFAAnalysisConfig]): 분석 설정

    Returns:
        FittedModel: 적합된 모델
    """
    engine = SemopyFitEngine(config)
    return engine.fit(spec, data, options)


@dataclass(frozen=True)
class FitSummary:
    """적합 결과 요약 (적합도 지수 + 적재량 표)"""

    model_name: str
    n_obs: int
    n_latent: int
    n_loadings: int
    fit_indices: Dict[str, float]
    loadings: pd.DataFrame
    group_sizes: Dict[Any, int]

    def key_indices(self, keys: List[str]) -> Dict[str, float]:
        return {key: self.fit_indices.get(key, np.nan) for key in keys}


def summarize(fitted: FittedModel, standardized: bool = True) -> FitSummary:
    """
    적합된 모델 요약

    Args:
        fitted (FittedModel): 적합된 모델
        standardized (bool): 표준화 적재량 포함 여부

    Returns:
        FitSummary: 요약
    """
    columns = ['lval', 'rval', 'group', 'Estimate', 'Std. Err', 'z-value', 'p-value']
    if standardized:
        columns.append('Est. Std')
    loadings = fitted.loadings[columns].rename(columns={'lval': 'Factor', 'rval': 'Item'})
    if not fitted.is_multigroup:
        loadings = loadings.drop(columns=['group'])

    if loadings.empty:
        raise SpecificationError(f"모델 '{fitted.name}'에 적재량이 없습니다")

    return FitSummary(
        model_name=fitted.name,
        n_obs=fitted.n_obs,
        n_latent=len(fitted.latent_variables),
        n_loadings=fitted.n_loadings,
        fit_indices=dict(fitted.fit_indices),
        loadings=loadings.reset_index(drop=True),
        group_sizes=dict(fitted.group_sizes),
    )
