"""
CDM Entity Matcher.

Compares parsed diagram entities against the canonical template registry
and produces advisory matches with attribute field mappings.

Matching is a pluggable strategy. The default strategy scores:
- 0.95 for an exact logical/display name match
- 0.85 for a common alias match
- otherwise ``0.4 * name_similarity + 0.6 * attribute_similarity``,
  accepted only above 0.7

Matching never mutates its input and never calls the network, so the same
entities and registry always produce the same matches.

Usage:
    from erd_deployer.formats.cdm import CDMMatcher

    matcher = CDMMatcher()
    for match in matcher.detect_canonical_entities(result.entities):
        print(f"{match.source_entity} -> {match.logical_name} ({match.confidence})")
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from rapidfuzz.distance import Levenshtein

from ...constants import MatcherConfig
from ..erd.erd_models import Attribute, Entity
from .cdm_registry import CDMRegistry, CDMTemplate

logger = logging.getLogger(__name__)


# =============================================================================
# Match Models
# =============================================================================

@dataclass(frozen=True)
class MatchScore:
    """Score produced by a strategy for one (entity, template) pair."""
    score: float
    match_type: str
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CDMMatch:
    """
    Advisory match between a diagram entity and a canonical template.

    Attributes:
        source_entity: Diagram entity name.
        logical_name: Canonical table logical name.
        display_name: Canonical table display name.
        score: Similarity score in ``[0, 1]``.
        match_type: ``exact``, ``alias`` or ``fuzzy``.
        field_mapping: Diagram column -> canonical column.
        unmapped_attributes: Diagram columns with no canonical counterpart.
        category: Template category.
        reasons: Human-readable explanation of the score.
    """
    source_entity: str
    logical_name: str
    display_name: str
    score: float
    match_type: str
    field_mapping: Dict[str, str] = field(default_factory=dict)
    unmapped_attributes: Tuple[str, ...] = ()
    category: str = ""
    reasons: Tuple[str, ...] = ()

    @property
    def confidence(self) -> str:
        if self.score >= MatcherConfig.HIGH_CONFIDENCE:
            return "high"
        if self.score >= MatcherConfig.MEDIUM_CONFIDENCE:
            return "medium"
        return "low"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceEntity": self.source_entity,
            "logicalName": self.logical_name,
            "displayName": self.display_name,
            "score": round(self.score, 4),
            "confidence": self.confidence,
            "matchType": self.match_type,
            "fieldMapping": dict(self.field_mapping),
            "unmappedAttributes": list(self.unmapped_attributes),
            "category": self.category,
            "reasons": list(self.reasons),
        }


# =============================================================================
# Strategies
# =============================================================================

@runtime_checkable
class MatchStrategy(Protocol):
    """Protocol for canonical matching strategies."""

    def score(self, entity: Entity, template: CDMTemplate) -> Optional[MatchScore]:
        """Score a pair; return None when the pair is not a match."""
        ...


def normalize_name(name: str) -> str:
    """Lower-case, drop non-alphanumerics and a single trailing plural 's'."""
    cleaned = re.sub(r'[^a-z0-9]', '', name.lower())
    if len(cleaned) > 1 and cleaned.endswith('s'):
        cleaned = cleaned[:-1]
    return cleaned


def attributes_match(left: str, right: str) -> bool:
    """Two column names match on equality or a small edit distance."""
    if left == right:
        return True
    if min(len(left), len(right)) <= MatcherConfig.MAX_ATTRIBUTE_DISTANCE + 1:
        return False
    return Levenshtein.distance(left, right) <= MatcherConfig.MAX_ATTRIBUTE_DISTANCE


class DefaultMatchStrategy:
    """Name, alias and shape based scoring."""

    def __init__(self, fuzzy_threshold: float = MatcherConfig.FUZZY_THRESHOLD):
        self.fuzzy_threshold = fuzzy_threshold

    def score(self, entity: Entity, template: CDMTemplate) -> Optional[MatchScore]:
        name = normalize_name(entity.name)
        if not name:
            return None

        if name in (normalize_name(template.logical_name), normalize_name(template.display_name)):
            return MatchScore(
                MatcherConfig.EXACT_MATCH_SCORE, "exact",
                (f"Name matches '{template.logical_name}'",),
            )

        for alias in template.common_aliases:
            if name == normalize_name(alias):
                return MatchScore(
                    MatcherConfig.ALIAS_MATCH_SCORE, "alias",
                    (f"'{entity.name}' is a common alias of '{template.logical_name}'",),
                )

        name_similarity = max(
            Levenshtein.normalized_similarity(name, normalize_name(template.logical_name)),
            Levenshtein.normalized_similarity(name, normalize_name(template.display_name)),
        )
        attribute_similarity, matched = self.attribute_similarity(entity.attributes, template)
        score = (
            MatcherConfig.NAME_WEIGHT * name_similarity
            + MatcherConfig.ATTRIBUTE_WEIGHT * attribute_similarity
        )
        if score <= self.fuzzy_threshold:
            return None
        return MatchScore(
            score, "fuzzy",
            (
                f"Name similarity {name_similarity:.2f}",
                f"{matched} of {len(entity.attributes)} columns match key columns",
            ),
        )

    @staticmethod
    def attribute_similarity(
        attributes: Sequence[Attribute],
        template: CDMTemplate,
    ) -> Tuple[float, int]:
        """Fraction of columns matching template key columns, and the match count."""
        if not attributes or not template.key_attributes:
            return 0.0, 0
        keys = [normalize_name(k) for k in template.key_attributes]
        matched = 0
        for attr in attributes:
            candidate = normalize_name(attr.name)
            if any(attributes_match(candidate, key) for key in keys):
                matched += 1
        return matched / max(len(attributes), len(keys)), matched


# =============================================================================
# Matcher
# =============================================================================

class CDMMatcher:
    """
    Detect canonical entities in a parsed diagram.

    Each diagram entity appears in at most one match and each template is
    claimed by at most one entity. Conflicts are resolved by highest score,
    then input order, then registry declaration order.
    """

    def __init__(
        self,
        registry: Optional[CDMRegistry] = None,
        strategy: Optional[MatchStrategy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the matcher.

        Args:
            registry: Template registry (defaults to the built-in catalog).
            strategy: Scoring strategy (defaults to ``DefaultMatchStrategy``).
            logger: Logger to use instead of the module logger.
        """
        self.registry = registry or CDMRegistry()
        self.strategy = strategy or DefaultMatchStrategy()
        self.logger = logger or logging.getLogger(__name__)

    def detect_canonical_entities(self, entities: Sequence[Entity]) -> List[CDMMatch]:
        """
        Match entities against the registry.

        Args:
            entities: Parsed diagram entities (not modified).

        Returns:
            Matches in input-entity order.
        """
        candidates: List[Tuple[float, int, int, Entity, CDMTemplate, MatchScore]] = []
        for entity_index, entity in enumerate(entities):
            for template_index, template in enumerate(self.registry):
                scored = self.strategy.score(entity, template)
                if scored is not None:
                    candidates.append(
                        (scored.score, entity_index, template_index, entity, template, scored)
                    )

        candidates.sort(key=lambda c: (-c[0], c[1], c[2]))

        claimed_entities = set()
        claimed_templates = set()
        selected: Dict[int, CDMMatch] = {}
        for _, entity_index, _, entity, template, scored in candidates:
            if entity_index in claimed_entities or template.logical_name in claimed_templates:
                continue
            claimed_entities.add(entity_index)
            claimed_templates.add(template.logical_name)
            selected[entity_index] = self._build_match(entity, template, scored)

        matches = [selected[i] for i in sorted(selected)]
        self.logger.info(f"Detected {len(matches)} canonical entities among {len(entities)}")
        return matches

    def build_field_mapping(
        self,
        entity: Entity,
        template: CDMTemplate,
    ) -> Tuple[Dict[str, str], Tuple[str, ...]]:
        """
        Map diagram columns onto canonical columns.

        Returns:
            Tuple of (mapping, unmapped column names).
        """
        mapping: Dict[str, str] = {}
        unmapped: List[str] = []
        keys = list(template.key_attributes)
        entity_name = normalize_name(entity.name)

        for attr in entity.attributes:
            candidate = normalize_name(attr.name)
            if attr.is_primary_key:
                mapping[attr.name] = template.primary_id_attribute
                continue
            if candidate in ("name", f"{entity_name}name", "fullname", "title", "subject"):
                mapping[attr.name] = template.primary_name_attribute
                continue

            exact = next((k for k in keys if normalize_name(k) == candidate), None)
            if exact is not None:
                mapping[attr.name] = exact
                continue

            close = [
                (Levenshtein.distance(candidate, normalize_name(k)), index, k)
                for index, k in enumerate(keys)
                if attributes_match(candidate, normalize_name(k))
            ]
            if close:
                mapping[attr.name] = min(close)[2]
            else:
                unmapped.append(attr.name)

        return mapping, tuple(unmapped)

    def summarize(self, matches: Sequence[CDMMatch]) -> Dict[str, Any]:
        """Counts by confidence and category."""
        by_confidence = {"high": 0, "medium": 0, "low": 0}
        by_category: Dict[str, int] = {}
        for match in matches:
            by_confidence[match.confidence] += 1
            by_category[match.category] = by_category.get(match.category, 0) + 1
        return {
            "total": len(matches),
            "byConfidence": by_confidence,
            "byCategory": by_category,
        }

    def _build_match(self, entity: Entity, template: CDMTemplate, scored: MatchScore) -> CDMMatch:
        mapping, unmapped = self.build_field_mapping(entity, template)
        return CDMMatch(
            source_entity=entity.name,
            logical_name=template.logical_name,
            display_name=template.display_name,
            score=scored.score,
            match_type=scored.match_type,
            field_mapping=mapping,
            unmapped_attributes=unmapped,
            category=template.category,
            reasons=scored.reasons,
        )
