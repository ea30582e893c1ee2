"""
Servico de segmentos.

Valida regras, resolve a audiencia e persiste o segmento. Atualizar as
regras de um segmento re-resolve e SUBSTITUI a audiencia armazenada.
"""
import logging
from typing import TYPE_CHECKING, Any, List

from crm.core.exceptions import NotFoundError, ValidationError
from .resolver import AudienceResolver
from .rules import parse_rules
from .types import AudienceResult, SegmentData

if TYPE_CHECKING:
    from crm.repositories.segment import SegmentRepository

logger = logging.getLogger(__name__)


class SegmentService:
    """Operacoes de alto nivel sobre segmentos."""

    def __init__(self, segment_repository: "SegmentRepository", resolver: AudienceResolver):
        self.segments = segment_repository
        self.resolver = resolver

    async def preview(self, raw_rules: Any) -> AudienceResult:
        """
        Calcula a audiencia sem persistir (contagem + estatisticas).

        Raises:
            RuleValidationError: regras invalidas
        """
        tree = parse_rules(raw_rules)
        return await self.resolver.resolve(tree)

    async def create_segment(self, name: str, raw_rules: Any, created_by: str) -> SegmentData:
        """
        Cria segmento com audiencia resolvida.

        Args:
            name: Nome do segmento
            raw_rules: Arvore de regras bruta
            created_by: Usuario criador

        Returns:
            SegmentData persistido

        Raises:
            ValidationError: nome vazio
            RuleValidationError: regras invalidas (nada e persistido)
        """
        if not name or not name.strip():
            raise ValidationError("Nome do segmento e obrigatorio")

        tree = parse_rules(raw_rules)
        audience = await self.resolver.resolve(tree)

        segment = await self.segments.create(
            name=name.strip(),
            rules=tree.to_dict(),
            condition_string=tree.describe(),
            customer_ids=audience.sorted_ids(),
            created_by=created_by,
        )
        logger.info(
            f"Segmento '{segment.name}' criado: {audience.count} clientes",
            extra={"segment_id": segment.id},
        )
        return segment

    async def update_rules(self, segment_id: str, raw_rules: Any) -> SegmentData:
        """
        Troca as regras e re-resolve a audiencia (substitui, nunca mescla).

        Raises:
            RuleValidationError: regras invalidas
            NotFoundError: segmento inexistente
        """
        tree = parse_rules(raw_rules)

        if not await self.segments.exists(segment_id):
            raise NotFoundError("Segmento", segment_id)

        audience = await self.resolver.resolve(tree)
        segment = await self.segments.replace_audience(
            segment_id,
            rules=tree.to_dict(),
            condition_string=tree.describe(),
            customer_ids=audience.sorted_ids(),
        )
        if segment is None:
            raise NotFoundError("Segmento", segment_id)

        logger.info(f"Segmento {segment_id} re-resolvido: {audience.count} clientes")
        return segment

    async def get_segment(self, segment_id: str) -> SegmentData:
        segment = await self.segments.find_by_id(segment_id)
        if segment is None:
            raise NotFoundError("Segmento", segment_id)
        return segment

    async def list_segments(self, created_by: str, limit: int = 50) -> List[SegmentData]:
        return await self.segments.list_by_creator(created_by, limit=limit)

    async def delete_segment(self, segment_id: str) -> None:
        """
        Remove segmento.

        Raises:
            NotFoundError: segmento inexistente
        """
        if not await self.segments.delete(segment_id):
            raise NotFoundError("Segmento", segment_id)
        logger.info(f"Segmento {segment_id} removido")
