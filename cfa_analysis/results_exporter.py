"""
CFA Results Exporter Module

이 모듈은 CFA 분석 결과(파라미터, 적합도 지수, 수정지수, 모델 비교, 측정동일성)를
CSV/JSON 파일로 저장하는 기능을 제공합니다.
"""

import pandas as pd
import numpy as np
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union
import logging
from datetime import datetime
import json

from .comparison import LikelihoodRatioResult, compare_model_table
from .fitted_model import FittedModel
from .invariance import InvarianceResult
from .reporter import fit_indices_table

logger = logging.getLogger(__name__)


class CFAResultsExporter:
    """CFA 분석 결과를 내보내는 클래스"""

    def __init__(self, output_dir: Union[str, Path] = None):
        """
        Results Exporter 초기화

        Args:
            output_dir (Union[str, Path]): 결과 저장 디렉토리
        """
        if output_dir is None:
            self.output_dir = Path("results/cfa_analysis")
        else:
            self.output_dir = Path(output_dir)

        # 출력 디렉토리 생성
        self.output_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _timestamp() -> str:
        return datetime.now().strftime("%Y%m%d_%H%M%S")

    def _save_csv(self, table: pd.DataFrame, filename: str, label: str) -> Path:
        file_path = self.output_dir / filename
        table.to_csv(file_path, index=False, encoding='utf-8-sig')
        logger.info(f"{label} 저장 완료: {file_path}")
        return file_path

    def export_parameters(self, fitted: FittedModel, filename: Optional[str] = None) -> Path:
        """파라미터 추정치 전체를 CSV로 저장"""
        if fitted.parameters.empty:
            raise ValueError(f"파라미터 데이터가 없습니다: {fitted.name}")
        if filename is None:
            filename = f"parameters_{fitted.name}_{self._timestamp()}.csv"
        table = fitted.parameters.copy()
        table['Model'] = fitted.name
        table['Sample_Size'] = fitted.n_obs
        return self._save_csv(table, filename, "파라미터")

    def export_fit_indices(self, fitted: FittedModel, filename: Optional[str] = None) -> Path:
        """적합도 지수를 해석과 함께 CSV로 저장"""
        if not fitted.fit_indices:
            raise ValueError(f"적합도 지수 데이터가 없습니다: {fitted.name}")
        if filename is None:
            filename = f"fit_indices_{fitted.name}_{self._timestamp()}.csv"
        table = fit_indices_table(fitted, keys=list(fitted.fit_indices.keys()))
        table['Model'] = fitted.name
        table['Sample_Size'] = fitted.n_obs
        return self._save_csv(table, filename, "적합도 지수")

    def export_modification_indices(self, mi_table: pd.DataFrame, model_name: str,
                                    filename: Optional[str] = None) -> Path:
        if filename is None:
            filename = f"modification_indices_{model_name}_{self._timestamp()}.csv"
        table = mi_table.copy()
        table['Model'] = model_name
        return self._save_csv(table, filename, "수정지수")

    def export_comparisons(self, comparisons: Iterable[LikelihoodRatioResult],
                           filename: Optional[str] = None) -> Path:
        table = compare_model_table(comparisons)
        if table.empty:
            raise ValueError("모델 비교 결과가 없습니다")
        if filename is None:
            filename = f"model_comparisons_{self._timestamp()}.csv"
        return self._save_csv(table, filename, "모델 비교")

    def export_invariance(self, result: InvarianceResult,
                          base_filename: Optional[str] = None) -> Dict[str, Path]:
        """단계별 적합도와 단계 간 비교를 각각 CSV로 저장"""
        if base_filename is None:
            base_filename = f"invariance_{result.specification.name}_{self._timestamp()}"
        saved = {
            'invariance_fit': self._save_csv(result.fit_table(), f"{base_filename}_fit.csv",
                                             "측정동일성 적합도"),
        }
        if result.comparisons:
            saved['invariance_tests'] = self._save_csv(
                result.comparison_table(), f"{base_filename}_tests.csv", "측정동일성 검정"
            )
        return saved

    def export_metadata(self, models: Dict[str, FittedModel],
                        extra: Optional[Dict[str, Any]] = None,
                        filename: Optional[str] = None) -> Path:
        """분석 메타데이터를 JSON으로 저장"""
        if filename is None:
            filename = f"cfa_metadata_{self._timestamp()}.json"
        file_path = self.output_dir / filename

        metadata = {
            'analysis_timestamp': datetime.now().isoformat(),
            'models': {
                name: {
                    'specification': fitted.specification.to_text(),
                    'parent': fitted.specification.parent,
                    'engine': fitted.engine,
                    'n_observations': fitted.n_obs,
                    'n_latent': len(fitted.latent_variables),
                    'n_loadings': fitted.n_loadings,
                    'group_column': fitted.group_column,
                    'group_sizes': {str(k): v for k, v in fitted.group_sizes.items()},
                    'group_equal': list(fitted.group_equal),
                    'fit_indices': {k: (None if not np.isfinite(v) else v)
                                    for k, v in fitted.fit_indices.items()},
                }
                for name, fitted in models.items()
            },
        }
        if extra:
            metadata.update(extra)

        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(metadata, f, indent=2, ensure_ascii=False, default=str)

        logger.info(f"메타데이터 저장 완료: {file_path}")
        return file_path

    def export_comprehensive_results(self, models: Dict[str, FittedModel],
                                     modification_indices: Optional[Dict[str, pd.DataFrame]] = None,
                                     comparisons: Optional[Iterable[LikelihoodRatioResult]] = None,
                                     invariance: Optional[InvarianceResult] = None,
                                     base_filename: Optional[str] = None) -> Dict[str, Path]:
        """
        모든 결과를 종합적으로 내보내기

        Returns:
            Dict[str, Path]: 저장된 파일들의 경로
        """
        if base_filename is None:
            base_filename = f"cfa_analysis_{self._timestamp()}"

        saved_files = {}
        for name, fitted in models.items():
            saved_files[f'{name}_parameters'] = self.export_parameters(
                fitted, f"{base_filename}_{name}_parameters.csv")
            if fitted.fit_indices:
                saved_files[f'{name}_fit_indices'] = self.export_fit_indices(
                    fitted, f"{base_filename}_{name}_fit_indices.csv")

        for name, table in (modification_indices or {}).items():
            saved_files[f'{name}_modification_indices'] = self.export_modification_indices(
                table, name, f"{base_filename}_{name}_mi.csv")

        comparisons = list(comparisons or [])
        if comparisons:
            saved_files['comparisons'] = self.export_comparisons(
                comparisons, f"{base_filename}_comparisons.csv")

        if invariance is not None:
            saved_files.update(self.export_invariance(invariance, f"{base_filename}_invariance"))

        saved_files['metadata'] = self.export_metadata(models, filename=f"{base_filename}_metadata.json")

        logger.info(f"종합 결과 저장 완료: {len(saved_files)}개 파일")
        return saved_files
