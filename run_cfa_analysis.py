#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
IMPACT 확인적 요인분석(CFA) 실행 스크립트

data/IMPACT.sav를 불러와 Model_Base / Model_Adapted를 적합하고,
우도비 검정과 Grade 2 vs 3 측정동일성 검정 결과를 HTML 보고서로 저장합니다.
"""

import logging
from datetime import datetime
from pathlib import Path

from cfa_analysis import CFAWorkflow, ReportConfig, get_default_config
from cfa_analysis.config import DEFAULT_DATA_FILE

Path('logs').mkdir(exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('logs/cfa_analysis.log', encoding='utf-8'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)


def main():
    """메인 실행 함수"""
    print(f'분석 시작 시간: {datetime.now().strftime("%Y-%m-%d %H:%M:%S")}')

    config = get_default_config()
    report_config = ReportConfig(output_dir='results/cfa_analysis')
    workflow = CFAWorkflow(config, report_config)

    run = workflow.run(DEFAULT_DATA_FILE)

    print('\n📈 모델 적합도 요약:')
    print('-' * 60)
    for name, fitted in run.fits.items():
        print(f'  {name}: χ²={fitted.chi2:.3f}, df={fitted.dof}, '
              f'CFI={fitted.cfi:.4f}, RMSEA={fitted.rmsea:.4f}')

    for result in run.comparisons:
        print(f'\n  {result.restricted} vs {result.general}: '
              f'Δχ²={result.chi2_diff:.3f}, Δdf={result.df_diff}, p={result.p_value:.4f} {result.stars}')

    if run.invariance is not None:
        print(f'\n  측정동일성: {run.invariance.supported_level.label}')

    logger.info(f"분석 완료: {run.report_path}")
    return run


if __name__ == "__main__":
    main()
