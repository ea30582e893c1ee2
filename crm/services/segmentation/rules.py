"""
Arvore de regras de segmentacao e validador.

Formato bruto (dict vindo de fora):

    {
        "type": "and",
        "conditions": [
            {"type": "simple", "field": "total_spend", "comparator": "gt", "value": 1000},
            {"type": "simple", "field": "visits", "comparator": "gte", "value": 5},
        ],
    }

O validador percorre a arvore inteira e coleta TODOS os erros com o
caminho de cada no (ex: "rules.conditions[1]"). So uma arvore sem
erros vira ValidatedRuleTree, o unico tipo aceito pelo resolver.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from crm.core.exceptions import RuleValidationError
from crm.core.timezone import parse_timestamp

logger = logging.getLogger(__name__)


class RuleField(str, Enum):
    """Atributos de cliente que podem ser usados em regras."""

    TOTAL_SPEND = "total_spend"
    VISITS = "visits"
    TOTAL_ORDERS = "total_orders"
    AVG_ORDER_VALUE = "avg_order_value"
    LAST_ORDER_DATE = "last_order_date"

    @property
    def is_temporal(self) -> bool:
        return self is RuleField.LAST_ORDER_DATE


class Comparator(str, Enum):
    """Comparadores suportados."""

    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"

    @property
    def symbol(self) -> str:
        return _COMPARATOR_SYMBOLS[self]


_COMPARATOR_SYMBOLS = {
    Comparator.GT: ">",
    Comparator.LT: "<",
    Comparator.GTE: ">=",
    Comparator.LTE: "<=",
    Comparator.EQ: "=",
}

# Nomes alternativos aceitos na entrada (formulario antigo de segmentos)
FIELD_ALIASES = {
    "spend": RuleField.TOTAL_SPEND,
    "orders": RuleField.TOTAL_ORDERS,
    "average_order": RuleField.AVG_ORDER_VALUE,
    "last_active": RuleField.LAST_ORDER_DATE,
}

COMBINATOR_TYPES = ("and", "or", "complex")


@dataclass(frozen=True)
class SimpleRule:
    """Predicado sobre um atributo: field <comparator> value."""

    field: RuleField
    comparator: Comparator
    value: Union[float, datetime]


@dataclass(frozen=True)
class AndRule:
    """Intersecao das audiencias dos filhos (2+ filhos)."""

    children: Tuple["RuleNode", ...]


@dataclass(frozen=True)
class OrRule:
    """Uniao deduplicada das audiencias dos filhos (2+ filhos)."""

    children: Tuple["RuleNode", ...]


@dataclass(frozen=True)
class ComplexRule:
    """Agrupamento aninhado; combina os filhos por intersecao, como AND."""

    children: Tuple["RuleNode", ...]


RuleNode = Union[SimpleRule, AndRule, OrRule, ComplexRule]

_TREE_TOKEN = object()


@dataclass(frozen=True)
class ValidatedRuleTree:
    """
    Arvore que passou pela validacao.

    Construida apenas por validate_rules/parse_rules.
    """

    root: RuleNode
    _token: Any = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self._token is not _TREE_TOKEN:
            raise TypeError("ValidatedRuleTree so pode ser criada pelo validador")

    def to_dict(self) -> dict:
        return rule_to_dict(self.root)

    def describe(self) -> str:
        return describe_rules(self.root)


@dataclass(frozen=True)
class RuleIssue:
    """Erro de validacao localizado na arvore."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass
class RuleValidationResult:
    """Resultado da validacao: arvore validada OU lista de erros."""

    tree: Optional[ValidatedRuleTree] = None
    errors: List[RuleIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.tree is not None and not self.errors

    def error_messages(self) -> List[str]:
        return [str(issue) for issue in self.errors]


def _coerce_number(value: Any) -> Optional[float]:
    """Converte para float finito. Retorna None se nao for numero."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(number):
        return None
    return number


def _resolve_field(raw: Any) -> Optional[RuleField]:
    if not isinstance(raw, str):
        return None
    name = raw.strip()
    if name in FIELD_ALIASES:
        return FIELD_ALIASES[name]
    try:
        return RuleField(name)
    except ValueError:
        return None


def _resolve_comparator(raw: Any) -> Optional[Comparator]:
    if not isinstance(raw, str):
        return None
    try:
        return Comparator(raw.strip().lower())
    except ValueError:
        return None


def _validate_simple(raw: dict, path: str, errors: List[RuleIssue]) -> Optional[SimpleRule]:
    start = len(errors)

    raw_field = raw.get("field")
    rule_field = None
    if raw_field is None or raw_field == "":
        errors.append(RuleIssue(path, "condicao simples precisa de field"))
    else:
        rule_field = _resolve_field(raw_field)
        if rule_field is None:
            errors.append(RuleIssue(path, f"field invalido '{raw_field}'"))

    raw_comparator = raw.get("comparator")
    comparator = _resolve_comparator(raw_comparator)
    if comparator is None:
        errors.append(RuleIssue(path, f"comparator invalido '{raw_comparator}'"))

    value: Any = None
    raw_value = raw.get("value")
    if raw_value is None or (isinstance(raw_value, str) and not raw_value.strip()):
        errors.append(RuleIssue(path, "condicao simples precisa de value"))
    elif rule_field is not None and rule_field.is_temporal:
        if isinstance(raw_value, bool):
            errors.append(RuleIssue(path, f"data invalida: {raw_value!r}"))
        else:
            try:
                value = parse_timestamp(raw_value)
            except ValueError:
                errors.append(RuleIssue(path, f"data invalida: {raw_value!r}"))
    else:
        value = _coerce_number(raw_value)
        if value is None:
            errors.append(RuleIssue(path, f"valor numerico invalido: {raw_value!r}"))

    if len(errors) > start:
        return None
    return SimpleRule(field=rule_field, comparator=comparator, value=value)


def _validate_node(raw: Any, path: str, errors: List[RuleIssue]) -> Optional[RuleNode]:
    if raw is None:
        errors.append(RuleIssue(path, "condicao ausente"))
        return None
    if not isinstance(raw, dict):
        errors.append(RuleIssue(path, "condicao deve ser um objeto"))
        return None

    raw_type = raw.get("type")
    node_type = raw_type.strip().lower() if isinstance(raw_type, str) else None

    if node_type == "simple":
        return _validate_simple(raw, path, errors)

    if node_type not in COMBINATOR_TYPES:
        errors.append(RuleIssue(path, f"tipo de condicao desconhecido '{raw_type}'"))
        return None

    label = node_type.upper()
    raw_children = raw.get("conditions", raw.get("children"))
    if not isinstance(raw_children, list) or not raw_children:
        errors.append(RuleIssue(path, f"condicao {label} precisa de conditions"))
        return None

    start = len(errors)
    children = []
    for index, raw_child in enumerate(raw_children):
        child = _validate_node(raw_child, f"{path}.conditions[{index}]", errors)
        if child is not None:
            children.append(child)

    if node_type in ("and", "or") and len(raw_children) < 2:
        errors.append(RuleIssue(path, f"{label} precisa de pelo menos duas condicoes"))

    if len(errors) > start:
        return None

    if node_type == "and":
        return AndRule(tuple(children))
    if node_type == "or":
        return OrRule(tuple(children))
    return ComplexRule(tuple(children))


def validate_rules(raw: Any, path: str = "rules") -> RuleValidationResult:
    """
    Valida arvore de regras bruta.

    Funcao pura: nao consulta banco. Coleta todos os erros.

    Args:
        raw: Arvore em formato dict
        path: Prefixo dos caminhos nos erros

    Returns:
        RuleValidationResult com tree (se valida) e errors
    """
    errors: List[RuleIssue] = []
    root = _validate_node(raw, path, errors)

    if errors or root is None:
        logger.warning(
            f"Regras de segmentacao invalidas: {len(errors)} erro(s)",
            extra={"rule_errors": [str(e) for e in errors]},
        )
        return RuleValidationResult(tree=None, errors=errors)

    return RuleValidationResult(tree=ValidatedRuleTree(root, _token=_TREE_TOKEN))


def parse_rules(raw: Any) -> ValidatedRuleTree:
    """
    Valida e retorna a arvore, ou levanta com todos os erros.

    Raises:
        RuleValidationError: arvore invalida
    """
    result = validate_rules(raw)
    if not result.is_valid:
        raise RuleValidationError(result.errors)
    return result.tree


def _format_value(value: Union[float, datetime]) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _children_of(node: RuleNode) -> Tuple[str, Tuple[RuleNode, ...]]:
    if isinstance(node, AndRule):
        return "and", node.children
    if isinstance(node, OrRule):
        return "or", node.children
    if isinstance(node, ComplexRule):
        return "complex", node.children
    raise TypeError(f"No de regra desconhecido: {type(node).__name__}")


def rule_to_dict(node: RuleNode) -> dict:
    """Serializacao canonica (persistida no segmento)."""
    if isinstance(node, ValidatedRuleTree):
        node = node.root

    if isinstance(node, SimpleRule):
        return {
            "type": "simple",
            "field": node.field.value,
            "comparator": node.comparator.value,
            "value": _format_value(node.value),
        }

    node_type, children = _children_of(node)
    return {
        "type": node_type,
        "conditions": [rule_to_dict(child) for child in children],
    }


def describe_rules(node: RuleNode) -> str:
    """
    Descricao legivel da arvore.

    Ex: "(total_spend > 1000 AND visits >= 5)"
    """
    if isinstance(node, ValidatedRuleTree):
        node = node.root

    if isinstance(node, SimpleRule):
        return f"{node.field.value} {node.comparator.symbol} {_format_value(node.value)}"

    node_type, children = _children_of(node)
    joiner = " OR " if node_type == "or" else " AND "
    return "(" + joiner.join(describe_rules(child) for child in children) + ")"
