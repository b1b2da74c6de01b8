"""
CFA Workflow Module

데이터 로딩 → 전처리 → 모델 정의 → 적합 → 수정지수 → 모델 비교 → 측정동일성 검정을
순서대로 실행하고, 단계마다 설명/모델 스펙/표/그림을 HTML 보고서에 추가합니다.

각 단계의 결과는 AnalysisRun 값에 담겨 다음 단계로 전달됩니다.
어느 단계가 실패하면 그때까지의 보고서를 저장한 뒤 예외를 그대로 전달합니다.
"""

import pandas as pd
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
import logging

from .comparison import LikelihoodRatioResult, compare_model_table, compare_models
from .config import (CFAAnalysisConfig, ReportConfig, DEFAULT_DATA_FILE, GROUP_VALUES,
                     GROUP_VARIABLE, MODEL_ADAPTED_EXTRA, MODEL_ADAPTED_NAME,
                     MODEL_BASE_NAME, MODEL_BASE_SPEC, get_default_config, group_label)
from .data_loader import SurveyDataLoader
from .data_transformer import (GroupPartition, Predicate, filter_rows, partition_by_group,
                               recode_values, rename_columns)
from .fit_engine import SemopyFitEngine
from .fitted_model import FitOptions, FittedModel
from .invariance import InvarianceResult, MeasurementInvarianceTester
from .model_spec import ModelSpecification, ModelSpecStore
from .modification_indices import compute_modification_indices
from .report_builder import CFAReport
from .reporter import (fit_indices_table, format_comparison, format_fit_summary,
                       format_invariance, format_loadings, format_modification_indices,
                       format_partition, print_report)
from .results_exporter import CFAResultsExporter
from .visualizer import (build_path_diagram, create_sem_diagram, plot_fit_indices,
                         plot_loading_heatmap)

logger = logging.getLogger(__name__)


@dataclass
class AnalysisRun:
    """한 번의 분석 실행에서 만들어진 모든 결과"""

    data: Optional[pd.DataFrame] = None
    specifications: ModelSpecStore = field(default_factory=ModelSpecStore)
    fits: Dict[str, FittedModel] = field(default_factory=dict)
    modification_indices: Dict[str, pd.DataFrame] = field(default_factory=dict)
    comparisons: List[LikelihoodRatioResult] = field(default_factory=list)
    partition: Optional[GroupPartition] = None
    invariance: Optional[InvarianceResult] = None
    report: Optional[CFAReport] = None
    report_path: Optional[Path] = None
    exported_files: Dict[str, Path] = field(default_factory=dict)
    completed_steps: List[str] = field(default_factory=list)


class CFAWorkflow:
    """IMPACT CFA 분석 워크플로우"""

    def __init__(self, config: Optional[CFAAnalysisConfig] = None,
                 report_config: Optional[ReportConfig] = None):
        """
        CFA Workflow 초기화

        Args:
            config (Optional[CFAAnalysisConfig]): 분석 설정
            report_config (Optional[ReportConfig]): 보고서 설정
        """
        self.config = config if config is not None else get_default_config()
        self.report_config = report_config if report_config is not None else ReportConfig()
        self.engine = SemopyFitEngine(self.config)
        self.invariance_tester = MeasurementInvarianceTester(self.config, self.engine.multigroup)

    # ------------------------------------------------------------------
    # 개별 단계
    # ------------------------------------------------------------------
    def load(self, data_path: Union[str, Path], apply_value_labels: bool = False,
             columns: Optional[List[str]] = None) -> pd.DataFrame:
        """데이터 파일 로딩"""
        loader = SurveyDataLoader(data_path)
        return loader.load(apply_value_labels=apply_value_labels, columns=columns)

    def prepare(self, data: pd.DataFrame, rename: Optional[Mapping[str, str]] = None,
                recode: Optional[Mapping[str, Mapping[Any, Any]]] = None,
                row_filter: Optional[Predicate] = None) -> pd.DataFrame:
        """
        컬럼 이름 변경 → 값 재코딩 → 행 필터링

        Args:
            data (pd.DataFrame): 원본 데이터
            rename (Optional[Mapping[str, str]]): {기존 이름: 새 이름}
            recode (Optional[Mapping]): {컬럼: {기존 값: 새 값}}
            row_filter (Optional[Predicate]): 남길 행 조건

        Returns:
            pd.DataFrame: 전처리된 데이터
        """
        prepared = data
        if rename:
            prepared = rename_columns(prepared, rename)
        for column, mapping in (recode or {}).items():
            prepared = recode_values(prepared, column, mapping)
        if row_filter is not None:
            prepared = filter_rows(prepared, row_filter)
        return prepared

    def define_models(self, store: Optional[ModelSpecStore] = None,
                      base_text: str = MODEL_BASE_SPEC,
                      extra_text: str = MODEL_ADAPTED_EXTRA,
                      base_name: str = MODEL_BASE_NAME,
                      adapted_name: str = MODEL_ADAPTED_NAME) -> ModelSpecStore:
        """기본 모델과 교차적재를 추가한 변형 모델 정의"""
        store = store if store is not None else ModelSpecStore()
        store.define(base_name, base_text)
        store.extend(base_name, extra_text, adapted_name)
        return store

    def fit(self, spec: ModelSpecification, data: pd.DataFrame,
            options: Optional[FitOptions] = None) -> FittedModel:
        fitted = self.engine.fit(spec, data, options)
        if self.config.verbose:
            print_report(format_fit_summary(fitted))
            print_report(format_loadings(fitted))
        return fitted

    def modification_indices(self, fitted: FittedModel,
                             limit: Optional[int] = None) -> pd.DataFrame:
        limit = self.config.mi_limit if limit is None else limit
        table = compute_modification_indices(fitted, sort_descending=True, limit=limit,
                                             min_value=self.config.mi_min_value,
                                             config=self.config)
        if self.config.verbose:
            print_report(format_modification_indices(table, fitted.name))
        return table

    def compare(self, restricted: FittedModel, general: FittedModel) -> LikelihoodRatioResult:
        result = compare_models(restricted, general,
                                significance_level=self.config.significance_level)
        if self.config.verbose:
            print_report(format_comparison(result))
        return result

    def test_invariance(self, spec: ModelSpecification, data: pd.DataFrame,
                        group: str = GROUP_VARIABLE,
                        groups: Optional[Iterable[Any]] = GROUP_VALUES):
        """
        그룹 분할 후 configural → weak → strong 순서로 측정동일성 검정

        Returns:
            Tuple[GroupPartition, InvarianceResult]
        """
        partition = partition_by_group(data, group, groups)
        if self.config.verbose:
            print_report(format_partition(partition))
        result = self.invariance_tester.run(spec, partition.combined(), group,
                                            groups=partition.labels)
        if self.config.verbose:
            print_report(format_invariance(result))
        return partition, result

    # ------------------------------------------------------------------
    # 보고서
    # ------------------------------------------------------------------
    def _report_data(self, report: CFAReport, data: pd.DataFrame, source: str) -> None:
        report.add_section('Data')
        report.add_text(f"Source: {source}\n\n"
                        f"{len(data)} respondents, {len(data.columns)} columns.")
        describe = data.describe().T.reset_index().rename(columns={'index': 'Variable'})
        report.add_table(describe, caption='Descriptive statistics')

    def _report_specifications(self, report: CFAReport, store: ModelSpecStore) -> None:
        report.add_section('Model Specifications')
        for spec in store:
            lineage = ' → '.join(store.lineage(spec.name))
            report.add_text(f"{spec.name} (lineage: {lineage}): "
                            f"{len(spec.latent_variables)} latent variables, "
                            f"{spec.n_loadings} loadings.")
            report.add_code(spec.to_text())

    def _report_fit(self, report: CFAReport, fitted: FittedModel,
                    mi_table: Optional[pd.DataFrame]) -> None:
        report.add_section(f"Fit: {fitted.name}")
        report.add_code(format_fit_summary(fitted))
        report.add_table(fit_indices_table(fitted), caption='Fit indices')
        loadings = fitted.loadings[['lval', 'rval', 'Estimate', 'Std. Err', 'p-value', 'Est. Std']]
        report.add_table(loadings.rename(columns={'lval': 'Factor', 'rval': 'Item'}),
                         caption='Factor loadings')
        if self.report_config.create_diagrams:
            report.add_diagram(build_path_diagram(fitted), caption=f"Path diagram: {fitted.name}")
            report.add_figure(plot_loading_heatmap(fitted),
                              caption=f"Standardized loadings: {fitted.name}")
        if mi_table is not None:
            report.add_table(mi_table, caption='Modification indices')

    def _report_comparisons(self, report: CFAReport, fits: Dict[str, FittedModel],
                            comparisons: List[LikelihoodRatioResult]) -> None:
        report.add_section('Model Comparison')
        for result in comparisons:
            report.add_code(format_comparison(result))
        report.add_table(compare_model_table(comparisons), caption='Likelihood ratio tests')
        if self.report_config.create_diagrams:
            report.add_figure(plot_fit_indices(fits), caption='Fit indices by model')

    def _report_invariance(self, report: CFAReport, partition: GroupPartition,
                           result: InvarianceResult) -> None:
        report.add_section(f"Measurement Invariance by {partition.group_column}")
        summary = partition.summary()
        summary['Group'] = [group_label(label, partition.group_column) for label in partition.labels]
        report.add_table(summary, caption='Groups')
        report.add_table(result.fit_table(), caption='Fit by invariance level')
        if result.comparisons:
            report.add_table(result.comparison_table(), caption='Nested comparisons')
        report.add_text(f"Supported level: {result.supported_level.label}")

    def build_report(self, run: AnalysisRun, source: str = '') -> CFAReport:
        """실행 결과 전체로 보고서 생성"""
        report = CFAReport(self.report_config)
        if run.data is not None:
            self._report_data(report, run.data, source)
        if len(run.specifications):
            self._report_specifications(report, run.specifications)
        for name, fitted in run.fits.items():
            self._report_fit(report, fitted, run.modification_indices.get(name))
        if run.comparisons:
            self._report_comparisons(report, run.fits, run.comparisons)
        if run.invariance is not None and run.partition is not None:
            self._report_invariance(report, run.partition, run.invariance)
        return report

    def export(self, run: AnalysisRun) -> Dict[str, Path]:
        """
        결과 표(CSV/JSON)와 경로 다이어그램 파일을 output_dir에 저장

        Returns:
            Dict[str, Path]: 저장된 파일들의 경로
        """
        output_dir = self.report_config.output_dir
        exporter = CFAResultsExporter(output_dir / 'tables')
        saved = exporter.export_comprehensive_results(
            run.fits,
            modification_indices=run.modification_indices,
            comparisons=run.comparisons,
            invariance=run.invariance,
            base_filename='cfa_analysis'
        )

        if self.report_config.create_diagrams:
            for name, fitted in run.fits.items():
                saved[f'{name}_diagram'] = create_sem_diagram(
                    fitted, output_dir / 'diagrams' / name,
                    fmt=self.report_config.diagram_format
                )
        return saved

    # ------------------------------------------------------------------
    # 전체 실행
    # ------------------------------------------------------------------
    def run(self, data_path: Union[str, Path, None] = DEFAULT_DATA_FILE,
            data: Optional[pd.DataFrame] = None,
            rename: Optional[Mapping[str, str]] = None,
            recode: Optional[Mapping[str, Mapping[Any, Any]]] = None,
            row_filter: Optional[Predicate] = None,
            group: str = GROUP_VARIABLE,
            groups: Optional[Iterable[Any]] = GROUP_VALUES,
            save_report: bool = True) -> AnalysisRun:
        """
        전체 분석 실행

        Args:
            data_path: 데이터 파일 경로 (data가 주어지면 무시)
            data (Optional[pd.DataFrame]): 이미 로딩된 데이터
            rename, recode, row_filter: 전처리 옵션
            group (str): 측정동일성 검정 그룹 변수
            groups: 비교할 그룹 값
            save_report (bool): HTML 보고서와 결과 표, 다이어그램 파일 저장 여부

        Returns:
            AnalysisRun: 분석 결과

        Raises:
            Exception: 실패한 단계의 예외를 그대로 전달. 완료된 단계의 결과는
                예외의 analysis_run 속성(AnalysisRun)에 담기고 부분 보고서가 저장됨
        """
        run = AnalysisRun()
        run.report = CFAReport(self.report_config)
        source = str(data_path) if data is None else 'in-memory DataFrame'

        print("=" * 60)
        print(self.report_config.title)
        print("=" * 60)

        try:
            # 1. 데이터
            raw = data if data is not None else self.load(data_path)
            run.data = self.prepare(raw, rename=rename, recode=recode, row_filter=row_filter)
            self._report_data(run.report, run.data, source)
            run.completed_steps.append('data')

            # 2. 모델 정의
            self.define_models(run.specifications)
            self._report_specifications(run.report, run.specifications)
            run.completed_steps.append('specifications')

            # 3. 모델별 적합 + 수정지수
            for name in run.specifications.names():
                spec = run.specifications.get(name)
                fitted = self.fit(spec, run.data)
                run.fits[name] = fitted
                run.modification_indices[name] = self.modification_indices(fitted)
                self._report_fit(run.report, fitted, run.modification_indices[name])
                run.completed_steps.append(f'fit:{name}')

            # 4. 중첩 모델 비교
            run.comparisons.append(self.compare(run.fits[MODEL_BASE_NAME],
                                                run.fits[MODEL_ADAPTED_NAME]))
            self._report_comparisons(run.report, run.fits, run.comparisons)
            run.completed_steps.append('comparison')

            # 5. 측정동일성
            if group in run.data.columns:
                run.partition, run.invariance = self.test_invariance(
                    run.specifications.get(MODEL_BASE_NAME), run.data, group, groups
                )
                self._report_invariance(run.report, run.partition, run.invariance)
                run.completed_steps.append('invariance')
            else:
                logger.warning(f"그룹 변수 '{group}'가 없어 측정동일성 검정을 건너뜁니다")

        except Exception as e:
            logger.error(f"분석 단계 실패 (완료: {run.completed_steps}): {type(e).__name__}: {e}")
            run.report.add_section('Error')
            run.report.add_error(f"{type(e).__name__}: {e}")
            if save_report:
                try:
                    run.report_path = run.report.save()
                except OSError as save_error:
                    logger.error(f"부분 보고서 저장 실패: {save_error}")
            # 완료된 단계의 결과는 예외에서 꺼내 쓸 수 있음
            e.analysis_run = run
            raise

        if save_report:
            run.report_path = run.report.save()
            run.exported_files = self.export(run)

        print("\n" + "=" * 60)
        print(f"분석 완료: {', '.join(run.completed_steps)}")
        if run.report_path is not None:
            print(f"보고서: {run.report_path}")
        print("=" * 60)
        return run
