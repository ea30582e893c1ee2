"""
Repository para segmentos.
"""

import logging
from typing import List, Optional

from crm.core.timezone import iso_utc
from crm.services.segmentation.types import SegmentData
from .base import BaseRepository

logger = logging.getLogger(__name__)


class SegmentRepository(BaseRepository[SegmentData]):
    """Repository para operacoes de segmentos no banco."""

    @property
    def table_name(self) -> str:
        return "segments"

    async def find_by_id(self, id: str) -> Optional[SegmentData]:
        """Busca segmento por ID."""
        response = self._execute(
            self.db.table(self.table_name).select("*").eq("id", id),
            "buscar segmento",
            id=id,
        )
        if response.data:
            return SegmentData.from_db_row(response.data[0])
        return None

    async def create(
        self,
        name: str,
        rules: dict,
        condition_string: str,
        customer_ids: List[str],
        created_by: str,
    ) -> SegmentData:
        """
        Cria novo segmento com a audiencia ja resolvida.

        Args:
            name: Nome do segmento
            rules: Arvore de regras canonica
            condition_string: Descricao legivel das regras
            customer_ids: Audiencia resolvida (ids unicos)
            created_by: Quem criou

        Returns:
            SegmentData criado
        """
        data = {
            "name": name,
            "rules": rules,
            "condition_string": condition_string,
            "customer_ids": list(customer_ids),
            "audience_size": len(customer_ids),
            "created_by": created_by,
        }
        response = self._execute(
            self.db.table(self.table_name).insert(data),
            "criar segmento",
            name=name,
        )
        if not response.data:
            raise self._empty_response("criar segmento")

        segment = SegmentData.from_db_row(response.data[0])
        logger.info(f"Segmento {segment.id} criado com {segment.audience_size} clientes")
        return segment

    async def replace_audience(
        self,
        segment_id: str,
        rules: dict,
        condition_string: str,
        customer_ids: List[str],
    ) -> Optional[SegmentData]:
        """
        Substitui regras e audiencia do segmento (nunca mescla).

        Returns:
            SegmentData atualizado ou None se nao encontrado
        """
        data = {
            "rules": rules,
            "condition_string": condition_string,
            "customer_ids": list(customer_ids),
            "audience_size": len(customer_ids),
            "updated_at": iso_utc(),
        }
        response = self._execute(
            self.db.table(self.table_name).update(data).eq("id", segment_id),
            "atualizar segmento",
            id=segment_id,
        )
        if not response.data:
            return None
        return SegmentData.from_db_row(response.data[0])

    async def list_by_creator(self, created_by: str, limit: int = 50) -> List[SegmentData]:
        """Lista segmentos de um usuario, mais recentes primeiro."""
        response = self._execute(
            self.db.table(self.table_name)
            .select("*")
            .eq("created_by", created_by)
            .order("created_at", desc=True)
            .limit(limit),
            "listar segmentos",
            created_by=created_by,
        )
        return [SegmentData.from_db_row(row) for row in (response.data or [])]

    async def delete(self, segment_id: str) -> bool:
        """Remove segmento. Campanhas que o referenciam nao sao afetadas."""
        response = self._execute(
            self.db.table(self.table_name).delete().eq("id", segment_id),
            "remover segmento",
            id=segment_id,
        )
        return bool(response.data)
