"""
공통 테스트 fixture

세 요인(WTA, INT, SEF) × 4문항 구조를 따르는 합성 IMPACT 데이터를 생성합니다.
i63은 INT 요인 외에 WTA 요인에도 교차적재되어 있습니다.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# 프로젝트 루트를 Python path에 추가
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cfa_analysis import CFAAnalysisConfig, ModelSpecStore
from cfa_analysis.config import (IMPACT_ITEMS, MODEL_ADAPTED_EXTRA, MODEL_ADAPTED_NAME,
                                 MODEL_BASE_NAME, MODEL_BASE_SPEC)
from cfa_analysis.fit_engine import SemopyFitEngine

FACTOR_LOADINGS = [0.8, 0.7, 0.75, 0.65]
FACTOR_CORRELATIONS = np.array([
    [1.0, 0.3, 0.2],
    [0.3, 1.0, 0.4],
    [0.2, 0.4, 1.0],
])


def make_impact_data(n_per_grade=(150, 300, 300), seed=42, cross_loading=0.6,
                     intercept_shift=0.0):
    """
    합성 IMPACT 데이터 생성

    Args:
        n_per_grade: Grade 1, 2, 3의 표본 수
        seed: 난수 시드
        cross_loading: WTA → i63 교차적재 크기
        intercept_shift: Grade 3에서 i57, i61 절편에 더할 값

    Returns:
        pd.DataFrame: id, Grade, i56 ~ i67
    """
    rng = np.random.default_rng(seed)

    loadings = np.zeros((12, 3))
    for factor in range(3):
        loadings[factor * 4:(factor + 1) * 4, factor] = FACTOR_LOADINGS
    loadings[7, 0] = cross_loading

    frames = []
    for grade, n in zip((1, 2, 3), n_per_grade):
        if n == 0:
            continue
        eta = rng.multivariate_normal(np.zeros(3), FACTOR_CORRELATIONS, size=n)
        intercepts = np.full(12, 3.0)
        if grade == 3:
            intercepts[[1, 5]] += intercept_shift
        errors = rng.normal(0.0, np.sqrt(0.4), size=(n, 12))
        items = eta @ loadings.T + intercepts + errors
        frame = pd.DataFrame(items, columns=IMPACT_ITEMS)
        frame.insert(0, 'Grade', grade)
        frames.append(frame)

    data = pd.concat(frames, ignore_index=True)
    data.insert(0, 'id', np.arange(1, len(data) + 1))
    return data


@pytest.fixture(scope='session')
def impact_data():
    return make_impact_data()


@pytest.fixture(scope='session')
def invariant_data():
    """교차적재가 없고 집단 간 측정 구조가 같은 데이터"""
    return make_impact_data(n_per_grade=(0, 300, 300), seed=7, cross_loading=0.0)


@pytest.fixture
def quiet_config():
    return CFAAnalysisConfig(verbose=False)


@pytest.fixture(scope='session')
def spec_store():
    store = ModelSpecStore()
    store.define(MODEL_BASE_NAME, MODEL_BASE_SPEC)
    store.extend(MODEL_BASE_NAME, MODEL_ADAPTED_EXTRA, MODEL_ADAPTED_NAME)
    return store


@pytest.fixture(scope='session')
def fitted_models(impact_data, spec_store):
    """semopy로 적합한 Model_Base, Model_Adapted"""
    engine = SemopyFitEngine(CFAAnalysisConfig(verbose=False))
    return {
        name: engine.fit(spec_store.get(name), impact_data)
        for name in spec_store.names()
    }
