"""
Servico de campanhas: criacao, consulta e relatorio de entrega.

O disparo em si fica no CampaignDispatcher.
"""
import logging
from typing import TYPE_CHECKING, List

from crm.core.exceptions import NotFoundError, ValidationError
from .dispatcher import CampaignDispatcher
from .templates import template_fields
from .types import CampaignData, CampaignReport

if TYPE_CHECKING:
    from crm.repositories.campaign import CampaignRepository
    from crm.repositories.message import MessageRepository
    from crm.repositories.segment import SegmentRepository

logger = logging.getLogger(__name__)

# Campos que o template pode referenciar
TEMPLATE_FIELDS = frozenset({
    "id",
    "name",
    "email",
    "phone",
    "location",
    "total_spend",
    "total_orders",
    "visits",
    "avg_order_value",
    "last_order_date",
})


class CampaignService:
    """Operacoes de alto nivel sobre campanhas."""

    def __init__(
        self,
        campaign_repository: "CampaignRepository",
        segment_repository: "SegmentRepository",
        message_repository: "MessageRepository",
        dispatcher: CampaignDispatcher,
    ):
        self.campaigns = campaign_repository
        self.segments = segment_repository
        self.messages = message_repository
        self.dispatcher = dispatcher

    async def create_campaign(
        self,
        name: str,
        segment_id: str,
        message_template: str,
        created_by: str,
        start: bool = False,
    ) -> CampaignData:
        """
        Cria campanha em DRAFT para um segmento existente.

        Args:
            name: Nome da campanha
            segment_id: Segmento alvo
            message_template: Template com {{campo}}
            created_by: Usuario criador
            start: Se True, inicia o disparo logo apos criar

        Returns:
            CampaignData (DRAFT, ou RUNNING se start=True)

        Raises:
            ValidationError: nome ou template vazio
            NotFoundError: segmento inexistente
        """
        if not name or not name.strip():
            raise ValidationError("Nome da campanha e obrigatorio")
        if not message_template or not message_template.strip():
            raise ValidationError("Template da mensagem e obrigatorio")

        segment = await self.segments.find_by_id(segment_id)
        if segment is None:
            raise NotFoundError("Segmento", segment_id)

        unknown = template_fields(message_template) - TEMPLATE_FIELDS
        if unknown:
            logger.warning(
                f"Template com campos desconhecidos (ficarao sem substituicao): {sorted(unknown)}"
            )

        campaign = await self.campaigns.create(
            name=name.strip(),
            segment_id=segment.id,
            message_template=message_template,
            created_by=created_by,
            audience_size=segment.audience_size,
        )

        if start:
            return await self.dispatcher.start_campaign(campaign.id)
        return campaign

    async def start_campaign(self, campaign_id: str) -> CampaignData:
        return await self.dispatcher.start_campaign(campaign_id)

    async def get_campaign(self, campaign_id: str) -> CampaignData:
        campaign = await self.campaigns.find_by_id(campaign_id)
        if campaign is None:
            raise NotFoundError("Campanha", campaign_id)
        return campaign

    async def list_campaigns(self, created_by: str, limit: int = 50) -> List[CampaignData]:
        """Campanhas do usuario, mais recentes primeiro."""
        return await self.campaigns.list_by_creator(created_by, limit=limit)

    async def get_campaign_report(self, campaign_id: str) -> CampaignReport:
        """
        Relatorio de entrega: contadores da campanha + mensagens por status.

        Raises:
            NotFoundError: campanha inexistente
        """
        campaign = await self.get_campaign(campaign_id)
        delivery_stats = await self.messages.count_by_status(campaign_id)
        stats = campaign.stats

        return CampaignReport(
            campaign_id=campaign.id,
            name=campaign.name,
            status=campaign.status,
            total=stats.total,
            sent=stats.sent,
            failed=stats.failed,
            success_rate=stats.success_rate,
            started_at=campaign.started_at,
            completed_at=campaign.completed_at,
            delivery_stats=delivery_stats,
        )
