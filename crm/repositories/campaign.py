"""
Repository para campanhas.

Transicoes de status usam compare-and-set (filtro pelo status atual) e
contadores usam a RPC increment_campaign_stats (incremento atomico,
nunca ler-modificar-escrever).
"""

import logging
from datetime import datetime
from typing import List, Optional

from crm.core.timezone import iso_utc
from crm.services.campaigns.types import CampaignData, CampaignStats, CampaignStatus
from .base import BaseRepository

logger = logging.getLogger(__name__)


class CampaignRepository(BaseRepository[CampaignData]):
    """Repository para operacoes de campanhas no banco."""

    @property
    def table_name(self) -> str:
        return "campaigns"

    async def find_by_id(self, id: str) -> Optional[CampaignData]:
        """
        Busca campanha por ID.

        Args:
            id: ID da campanha

        Returns:
            CampaignData ou None se nao encontrada
        """
        response = self._execute(
            self.db.table(self.table_name).select("*").eq("id", id),
            "buscar campanha",
            id=id,
        )
        if not response.data:
            return None
        return CampaignData.from_db_row(response.data[0])

    async def create(
        self,
        name: str,
        segment_id: str,
        message_template: str,
        created_by: str,
        audience_size: int = 0,
    ) -> CampaignData:
        """
        Cria nova campanha em DRAFT.

        Args:
            name: Nome da campanha
            segment_id: Segmento alvo (referencia, nao posse)
            message_template: Template com placeholders {{campo}}
            created_by: Quem criou
            audience_size: Tamanho da audiencia no momento da criacao

        Returns:
            CampaignData criada
        """
        data = {
            "name": name,
            "segment_id": segment_id,
            "message_template": message_template,
            "created_by": created_by,
            "status": CampaignStatus.DRAFT.value,
            "audience_size": audience_size,
            "stats_total": 0,
            "stats_sent": 0,
            "stats_failed": 0,
        }
        response = self._execute(
            self.db.table(self.table_name).insert(data),
            "criar campanha",
            name=name,
        )
        if not response.data:
            raise self._empty_response("criar campanha")

        campaign = CampaignData.from_db_row(response.data[0])
        logger.info(f"Campanha {campaign.id} criada para segmento {segment_id}")
        return campaign

    async def list_by_creator(self, created_by: str, limit: int = 50) -> List[CampaignData]:
        """Lista campanhas de um usuario, mais recentes primeiro."""
        response = self._execute(
            self.db.table(self.table_name)
            .select("*")
            .eq("created_by", created_by)
            .order("created_at", desc=True)
            .limit(limit),
            "listar campanhas",
            created_by=created_by,
        )
        return [CampaignData.from_db_row(row) for row in (response.data or [])]

    async def mark_running(
        self,
        campaign_id: str,
        total: int,
        started_at: datetime,
    ) -> Optional[CampaignData]:
        """
        DRAFT -> RUNNING, fixando stats.total.

        So atualiza se a campanha ainda estiver em DRAFT.

        Returns:
            CampaignData atualizada, ou None se outra chamada ja iniciou
        """
        data = {
            "status": CampaignStatus.RUNNING.value,
            "started_at": iso_utc(started_at),
            "audience_size": total,
            "stats_total": total,
        }
        response = self._execute(
            self.db.table(self.table_name)
            .update(data)
            .eq("id", campaign_id)
            .eq("status", CampaignStatus.DRAFT.value),
            "iniciar campanha",
            id=campaign_id,
        )
        if not response.data:
            return None
        return CampaignData.from_db_row(response.data[0])

    async def mark_finished(
        self,
        campaign_id: str,
        status: CampaignStatus,
        completed_at: datetime,
        failure_reason: Optional[str] = None,
    ) -> bool:
        """
        RUNNING -> COMPLETED/FAILED.

        Returns:
            True se a transicao foi aplicada
        """
        data = {
            "status": status.value,
            "completed_at": iso_utc(completed_at),
        }
        if failure_reason is not None:
            data["failure_reason"] = failure_reason

        response = self._execute(
            self.db.table(self.table_name)
            .update(data)
            .eq("id", campaign_id)
            .eq("status", CampaignStatus.RUNNING.value),
            "finalizar campanha",
            id=campaign_id,
            status=status.value,
        )
        return bool(response.data)

    async def increment_stats(
        self,
        campaign_id: str,
        sent: int = 0,
        failed: int = 0,
    ) -> Optional[CampaignStats]:
        """
        Incrementa contadores da campanha de forma atomica.

        Args:
            campaign_id: ID da campanha
            sent: Delta de enviados (pode ser negativo: SENT -> FAILED)
            failed: Delta de falhas

        Returns:
            Contadores atualizados ou None se campanha nao existe
        """
        if not sent and not failed:
            return None

        response = self._execute(
            self.db.rpc(
                "increment_campaign_stats",
                {
                    "p_campaign_id": campaign_id,
                    "p_sent": sent,
                    "p_failed": failed,
                },
            ),
            "incrementar contadores",
            id=campaign_id,
        )
        if not response.data:
            return None

        row = response.data[0] if isinstance(response.data, list) else response.data
        return CampaignStats(
            total=int(row.get("stats_total") or 0),
            sent=int(row.get("stats_sent") or 0),
            failed=int(row.get("stats_failed") or 0),
        )
