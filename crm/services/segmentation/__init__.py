"""
Segmentacao de clientes: arvore de regras, validador e resolver de audiencia.
"""
from .rules import (
    AndRule,
    Comparator,
    ComplexRule,
    OrRule,
    RuleField,
    RuleIssue,
    RuleNode,
    RuleValidationResult,
    SimpleRule,
    ValidatedRuleTree,
    describe_rules,
    parse_rules,
    rule_to_dict,
    validate_rules,
)
from .resolver import AudienceResolver
from .service import SegmentService
from .types import AudienceResult, AudienceStats, SegmentData

__all__ = [
    "AndRule",
    "Comparator",
    "ComplexRule",
    "OrRule",
    "RuleField",
    "RuleIssue",
    "RuleNode",
    "RuleValidationResult",
    "SimpleRule",
    "ValidatedRuleTree",
    "describe_rules",
    "parse_rules",
    "rule_to_dict",
    "validate_rules",
    "AudienceResolver",
    "SegmentService",
    "AudienceResult",
    "AudienceStats",
    "SegmentData",
]
