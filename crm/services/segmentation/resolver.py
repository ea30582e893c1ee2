"""
Resolver de audiencia.

Avalia uma ValidatedRuleTree contra o repositorio de clientes:
- SimpleRule: uma consulta por predicado
- AndRule/ComplexRule: intersecao dos filhos
- OrRule: uniao deduplicada dos filhos

Filhos de um mesmo combinador sao avaliados em paralelo.
"""
import asyncio
import logging
from typing import TYPE_CHECKING, FrozenSet, Iterable, Set

from crm.core.exceptions import InvalidRuleTreeError
from .rules import AndRule, ComplexRule, OrRule, RuleNode, SimpleRule, ValidatedRuleTree
from .types import AudienceResult, AudienceStats

if TYPE_CHECKING:
    from crm.repositories.customer import CustomerRepository

logger = logging.getLogger(__name__)


class AudienceResolver:
    """Calcula o conjunto de clientes que satisfaz uma arvore de regras."""

    def __init__(self, customer_repository: "CustomerRepository"):
        self.customers = customer_repository

    async def resolve(self, tree: ValidatedRuleTree) -> AudienceResult:
        """
        Resolve a audiencia e calcula estatisticas descritivas.

        Args:
            tree: Arvore validada

        Returns:
            AudienceResult com ids unicos e medias

        Raises:
            InvalidRuleTreeError: arvore nao validada ou no desconhecido
            DatabaseError: falha do repositorio (propagada)
        """
        ids = await self.resolve_ids(tree)
        stats = await self._compute_stats(ids)

        logger.info(f"Audiencia resolvida: {len(ids)} clientes")
        return AudienceResult(customer_ids=ids, stats=stats)

    async def resolve_ids(self, tree: ValidatedRuleTree) -> FrozenSet[str]:
        """Resolve so o conjunto de ids, sem estatisticas."""
        if not isinstance(tree, ValidatedRuleTree):
            raise InvalidRuleTreeError(
                "Arvore de regras nao validada",
                details={"type": type(tree).__name__},
            )
        return frozenset(await self._evaluate(tree.root))

    async def _evaluate(self, node: RuleNode) -> Set[str]:
        if isinstance(node, SimpleRule):
            ids = await self.customers.query_by_predicate(
                node.field, node.comparator, node.value
            )
            return set(ids)

        if isinstance(node, (AndRule, ComplexRule)):
            child_sets = await self._evaluate_children(node.children)
            result = set(child_sets[0])
            for child_set in child_sets[1:]:
                result &= child_set
            return result

        if isinstance(node, OrRule):
            child_sets = await self._evaluate_children(node.children)
            result: Set[str] = set()
            for child_set in child_sets:
                result |= child_set
            return result

        raise InvalidRuleTreeError(
            "No de regra desconhecido",
            details={"type": type(node).__name__},
        )

    async def _evaluate_children(self, children: Iterable[RuleNode]) -> list:
        children = list(children)
        if not children:
            raise InvalidRuleTreeError("Combinador sem filhos")
        return await asyncio.gather(*(self._evaluate(child) for child in children))

    async def _compute_stats(self, ids: FrozenSet[str]) -> AudienceStats:
        if not ids:
            return AudienceStats()

        projections = await self.customers.get_attributes(ids)
        if not projections:
            return AudienceStats(count=len(ids))

        total_spend = sum(c.total_spend for c in projections)
        total_orders = sum(c.total_orders for c in projections)
        return AudienceStats(
            count=len(ids),
            average_spend=round(total_spend / len(projections), 2),
            average_orders=round(total_orders / len(projections), 2),
        )
