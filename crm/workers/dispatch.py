"""
Worker de disparo de uma campanha.

Inicia a campanha, aguarda o fim do envio e dos recibos e loga o
relatorio final.
"""
import logging

from crm.engine import MarketingEngine
from crm.services.campaigns.types import CampaignReport

logger = logging.getLogger(__name__)


async def dispatch_campaign(campaign_id: str, engine: MarketingEngine = None) -> CampaignReport:
    """
    Dispara uma campanha e retorna o relatorio apos o flush dos recibos.

    Args:
        campaign_id: ID da campanha (DRAFT)
        engine: Engine ja configurada (default: from_settings)
    """
    engine = engine or MarketingEngine.from_settings()

    async with engine:
        campaign = await engine.campaigns.start_campaign(campaign_id)
        logger.info(
            f"Campanha '{campaign.name}' em execucao: {campaign.stats.total} destinatarios"
        )
        await engine.dispatcher.wait(campaign_id)

    report = await engine.campaigns.get_campaign_report(campaign_id)
    logger.info(
        f"Campanha {campaign_id} finalizada com status {report.status.value}: "
        f"{report.sent} enviadas, {report.failed} falhas ({report.success_rate}%)",
        extra={"campaign_id": campaign_id, "report": report.to_dict()},
    )
    return report
