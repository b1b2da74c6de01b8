"""
Model Specification Module

lavaan/semopy 형식의 모델 스펙 문자열을 관계(relation) 목록으로 파싱하고,
이름이 붙은 불변 모델 스펙을 저장/확장하는 기능을 제공합니다.

지원하는 연산자:
    =~  측정 관계 (잠재변수 =~ 지표1 + 지표2 ...)
    ~   회귀 관계 (종속변수 ~ 예측변수1 + ...)
    ~~  공분산 관계 (변수 ~~ 변수)

각 항(term)에는 고정값(1*x) 또는 파라미터 라벨(a*x)을 붙일 수 있습니다.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union
import logging

from .errors import ColumnNotFoundError, SpecificationError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_.]*$')
_RELATION = re.compile(r'^(?P<lhs>.*?)\s*(?P<op>=~|~~|~)\s*(?P<rhs>.*)$')


class RelationKind(Enum):
    """관계 종류"""
    MEASUREMENT = '=~'
    REGRESSION = '~'
    COVARIANCE = '~~'

    @property
    def operator(self) -> str:
        return self.value


@dataclass(frozen=True)
class Term:
    """관계의 우변 항 (변수 이름 + 선택적 수식어)"""

    name: str
    modifier: Optional[Union[float, str]] = None

    @property
    def is_fixed(self) -> bool:
        return isinstance(self.modifier, float)

    @property
    def label(self) -> Optional[str]:
        return self.modifier if isinstance(self.modifier, str) else None

    def to_text(self) -> str:
        if self.modifier is None:
            return self.name
        if isinstance(self.modifier, float):
            value = int(self.modifier) if self.modifier.is_integer() else self.modifier
            return f"{value}*{self.name}"
        return f"{self.modifier}*{self.name}"


@dataclass(frozen=True)
class Relation:
    """하나의 관계: target (연산자) terms"""

    kind: RelationKind
    target: str
    terms: Tuple[Term, ...]

    @property
    def sources(self) -> Tuple[str, ...]:
        return tuple(term.name for term in self.terms)

    def to_text(self) -> str:
        rhs = " + ".join(term.to_text() for term in self.terms)
        return f"{self.target} {self.kind.operator} {rhs}"

    def parameters(self) -> Tuple[Tuple[str, str, str, Optional[Union[float, str]]], ...]:
        """
        관계가 정의하는 개별 파라미터 목록

        Returns:
            (연산자, 왼쪽, 오른쪽, 수식어) 튜플들. 공분산은 변수 순서를 정규화합니다.
        """
        params = []
        for term in self.terms:
            if self.kind is RelationKind.COVARIANCE:
                left, right = sorted((self.target, term.name))
            else:
                left, right = self.target, term.name
            params.append((self.kind.operator, left, right, term.modifier))
        return tuple(params)


def _parse_term(token: str, line_no: int) -> Term:
    token = token.strip()
    if not token:
        raise SpecificationError(f"{line_no}행: 빈 항이 있습니다")

    modifier = None
    if '*' in token:
        raw_modifier, name = (part.strip() for part in token.split('*', 1))
        try:
            modifier = float(raw_modifier)
        except ValueError:
            if not _IDENTIFIER.match(raw_modifier):
                raise SpecificationError(f"{line_no}행: 잘못된 수식어 '{raw_modifier}'")
            modifier = raw_modifier
    else:
        name = token

    if not _IDENTIFIER.match(name):
        raise SpecificationError(f"{line_no}행: 잘못된 변수 이름 '{name}'")
    return Term(name=name, modifier=modifier)


def parse_relations(text: str) -> Tuple[Relation, ...]:
    """
    모델 스펙 문자열을 관계 목록으로 파싱

    Args:
        text (str): 모델 스펙 (한 줄에 관계 하나, '#' 주석 허용, ';'로도 구분 가능)

    Returns:
        Tuple[Relation, ...]: 파싱된 관계들
    """
    relations = []

    for line_no, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.split('#', 1)[0].strip()
        if not line:
            continue

        for statement in line.split(';'):
            statement = statement.strip()
            if not statement:
                continue

            match = _RELATION.match(statement)
            if match is None:
                raise SpecificationError(f"{line_no}행: 연산자(=~, ~, ~~)가 없습니다: '{statement}'")

            lhs = match.group('lhs').strip()
            rhs = match.group('rhs').strip()
            if not lhs or not rhs:
                raise SpecificationError(f"{line_no}행: 관계의 좌변 또는 우변이 비어있습니다: '{statement}'")
            if not _IDENTIFIER.match(lhs):
                raise SpecificationError(f"{line_no}행: 잘못된 좌변 변수 '{lhs}'")
            if '~' in rhs or '=' in rhs:
                raise SpecificationError(f"{line_no}행: 한 줄에 연산자가 여러 개 있습니다: '{statement}'")

            kind = RelationKind(match.group('op'))
            terms = tuple(_parse_term(token, line_no) for token in rhs.split('+'))
            relations.append(Relation(kind=kind, target=lhs, terms=terms))

    if not relations:
        raise SpecificationError("모델 스펙에 관계가 하나도 없습니다")

    return tuple(relations)


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for item in items:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


@dataclass(frozen=True)
class ModelSpecification:
    """이름이 붙은 불변 모델 스펙"""

    name: str
    relations: Tuple[Relation, ...]
    parent: Optional[str] = None

    @classmethod
    def from_text(cls, name: str, text: str, parent: Optional[str] = None) -> 'ModelSpecification':
        return cls(name=name, relations=parse_relations(text), parent=parent)

    def relations_of(self, kind: RelationKind) -> Tuple[Relation, ...]:
        return tuple(rel for rel in self.relations if rel.kind is kind)

    @property
    def latent_variables(self) -> List[str]:
        """측정 관계의 좌변 변수 (등장 순서)"""
        return _unique(rel.target for rel in self.relations_of(RelationKind.MEASUREMENT))

    @property
    def variables(self) -> List[str]:
        names = []
        for rel in self.relations:
            names.append(rel.target)
            names.extend(rel.sources)
        return _unique(names)

    @property
    def observed_variables(self) -> List[str]:
        """잠재변수가 아닌 모든 변수 (데이터 컬럼으로 존재해야 함)"""
        latent = set(self.latent_variables)
        return [name for name in self.variables if name not in latent]

    @property
    def loadings(self) -> List[Tuple[str, str]]:
        """(잠재변수, 지표) 쌍 목록 - 같은 쌍은 한 번만"""
        pairs = []
        for rel in self.relations_of(RelationKind.MEASUREMENT):
            pairs.extend((rel.target, term.name) for term in rel.terms)
        return _unique(pairs)

    @property
    def n_loadings(self) -> int:
        return len(self.loadings)

    def indicators_of(self, latent: str) -> List[str]:
        return [indicator for lat, indicator in self.loadings if lat == latent]

    def loading_modifier(self, latent: str, indicator: str) -> Optional[Union[float, str]]:
        """해당 적재량에 붙은 마지막 수식어 (없으면 None)"""
        modifier = None
        for rel in self.relations_of(RelationKind.MEASUREMENT):
            if rel.target != latent:
                continue
            for term in rel.terms:
                if term.name == indicator and term.modifier is not None:
                    modifier = term.modifier
        return modifier

    def cross_loadings(self) -> List[Tuple[str, str]]:
        """두 번째 이후 잠재변수에 걸린 지표의 적재량 (교차적재)"""
        seen = set()
        crosses = []
        for latent, indicator in self.loadings:
            if indicator in seen:
                crosses.append((latent, indicator))
            seen.add(indicator)
        return crosses

    def parameter_set(self) -> Set[Tuple]:
        params = set()
        for rel in self.relations:
            params.update(rel.parameters())
        return params

    def is_nested_in(self, other: 'ModelSpecification') -> bool:
        """이 스펙의 파라미터 집합이 other의 진부분집합이면 True"""
        return self.parameter_set() < other.parameter_set()

    def validate_against(self, columns: Iterable[str]) -> None:
        """스펙의 관측변수가 모두 데이터 컬럼에 있는지 확인"""
        columns = set(columns)
        missing = [name for name in self.observed_variables if name not in columns]
        if missing:
            raise ColumnNotFoundError(missing, f"모델 스펙 '{self.name}'")

    def to_text(self) -> str:
        return "\n".join(rel.to_text() for rel in self.relations)

    def to_semopy(self) -> str:
        """
        semopy 모델 스펙 문자열 생성

        같은 좌변의 측정/회귀 관계는 한 줄로 합칩니다.
        """
        merged: Dict[Tuple[RelationKind, str], List[Term]] = {}
        order: List[Tuple[RelationKind, str]] = []
        covariances = []

        for rel in self.relations:
            if rel.kind is RelationKind.COVARIANCE:
                covariances.append(rel.to_text())
                continue
            key = (rel.kind, rel.target)
            if key not in merged:
                merged[key] = []
                order.append(key)
            for term in rel.terms:
                if all(existing.name != term.name for existing in merged[key]):
                    merged[key].append(term)

        lines = [f"# {self.name}"]
        for kind, target in order:
            lines.append(Relation(kind, target, tuple(merged[(kind, target)])).to_text())
        lines.extend(covariances)
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.to_text()


def extend_specification(base: ModelSpecification,
                         additional: Union[str, Iterable[Relation]],
                         name: str) -> ModelSpecification:
    """
    기존 스펙에 관계를 추가한 새 스펙 생성 (기존 스펙은 변경되지 않음)

    Args:
        base (ModelSpecification): 기준 스펙
        additional (Union[str, Iterable[Relation]]): 추가할 관계 (문자열 또는 Relation 목록)
        name (str): 새 스펙 이름

    Returns:
        ModelSpecification: parent가 base.name인 새 스펙
    """
    if isinstance(additional, str):
        new_relations = parse_relations(additional)
    else:
        new_relations = tuple(additional)

    if not new_relations:
        raise SpecificationError("추가할 관계가 없습니다")

    extended = ModelSpecification(name=name, relations=base.relations + new_relations,
                                  parent=base.name)
    if extended.parameter_set() == base.parameter_set():
        raise SpecificationError(f"'{name}'이 '{base.name}'과 같은 파라미터만 포함합니다")

    logger.info(f"모델 스펙 확장: {base.name} → {name} (+{len(new_relations)}개 관계)")
    return extended


class ModelSpecStore:
    """이름이 붙은 모델 스펙 저장소 (정의된 스펙은 변경 불가)"""

    def __init__(self):
        self._specs: Dict[str, ModelSpecification] = {}

    def define(self, name: str, text: str) -> ModelSpecification:
        """
        새 모델 스펙 정의

        Args:
            name (str): 스펙 이름
            text (str): 모델 스펙 문자열

        Returns:
            ModelSpecification: 저장된 스펙
        """
        self._ensure_new(name)
        spec = ModelSpecification.from_text(name, text)
        self._specs[name] = spec
        logger.info(f"모델 스펙 정의: {name} (관계 {len(spec.relations)}개)")
        return spec

    def add(self, spec: ModelSpecification) -> ModelSpecification:
        self._ensure_new(spec.name)
        self._specs[spec.name] = spec
        return spec

    def extend(self, base_name: str, additional: Union[str, Iterable[Relation]],
               name: str) -> ModelSpecification:
        """저장된 스펙을 확장해 새 이름으로 저장"""
        self._ensure_new(name)
        spec = extend_specification(self.get(base_name), additional, name)
        self._specs[name] = spec
        return spec

    def get(self, name: str) -> ModelSpecification:
        if name not in self._specs:
            raise KeyError(f"정의되지 않은 모델 스펙: {name}")
        return self._specs[name]

    def names(self) -> List[str]:
        return list(self._specs.keys())

    def lineage(self, name: str) -> List[str]:
        """루트 스펙부터 name까지의 확장 경로"""
        chain = [name]
        spec = self.get(name)
        while spec.parent is not None and spec.parent in self._specs:
            chain.append(spec.parent)
            spec = self._specs[spec.parent]
        return list(reversed(chain))

    def _ensure_new(self, name: str) -> None:
        if not name or not name.strip():
            raise SpecificationError("모델 스펙 이름이 비어있습니다")
        if name in self._specs:
            raise SpecificationError(f"이미 정의된 모델 스펙: {name}")

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def __iter__(self):
        return iter(self._specs.values())


def create_cfa_spec(factors: Dict[str, List[str]], name: str = 'cfa_model',
                    allow_correlations: bool = True) -> ModelSpecification:
    """
    {요인: 문항 목록}으로부터 CFA 스펙 생성

    Args:
        factors (Dict[str, List[str]]): 요인별 문항
        name (str): 스펙 이름
        allow_correlations (bool): False면 요인간 공분산을 0으로 고정

    Returns:
        ModelSpecification: 생성된 스펙
    """
    if not factors:
        raise SpecificationError("요인이 없습니다")

    spec_lines = [f"# {name}"]
    for factor_name, items in factors.items():
        if len(items) < 2:
            raise SpecificationError(f"요인 {factor_name}의 문항이 2개 미만입니다")
        spec_lines.append(f"{factor_name} =~ " + " + ".join(items))

    if not allow_correlations and len(factors) > 1:
        factor_names = list(factors.keys())
        for i, factor1 in enumerate(factor_names):
            for factor2 in factor_names[i + 1:]:
                spec_lines.append(f"{factor1} ~~ 0*{factor2}")

    return ModelSpecification.from_text(name, "\n".join(spec_lines))
