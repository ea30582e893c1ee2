"""
Maquina de estados de campanhas e mensagens.

Campanha: DRAFT -> RUNNING -> {COMPLETED, FAILED}. Estados terminais nao
tem saida. Cada transicao no banco e um compare-and-set pelo status atual,
entao duas chamadas concorrentes nunca aplicam a mesma transicao.

Mensagem: PENDING -> {SENT, FAILED, DELIVERED}; SENT -> {DELIVERED, FAILED};
FAILED e DELIVERED sao finais.
"""
import logging
from typing import TYPE_CHECKING, Optional, Tuple

from crm.core.exceptions import (
    CampaignAlreadyRunningError,
    CampaignStateError,
    NotFoundError,
)
from crm.core.timezone import utc_now
from .types import CampaignData, CampaignStatus, MessageStatus

if TYPE_CHECKING:
    from crm.repositories.campaign import CampaignRepository

logger = logging.getLogger(__name__)


CAMPAIGN_TRANSITIONS = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.RUNNING}),
    CampaignStatus.RUNNING: frozenset({CampaignStatus.COMPLETED, CampaignStatus.FAILED}),
    CampaignStatus.COMPLETED: frozenset(),
    CampaignStatus.FAILED: frozenset(),
}

MESSAGE_TRANSITIONS = {
    MessageStatus.PENDING: frozenset({
        MessageStatus.SENT,
        MessageStatus.FAILED,
        MessageStatus.DELIVERED,
    }),
    MessageStatus.SENT: frozenset({MessageStatus.DELIVERED, MessageStatus.FAILED}),
    MessageStatus.FAILED: frozenset(),
    MessageStatus.DELIVERED: frozenset(),
}


def can_transition(current: CampaignStatus, target: CampaignStatus) -> bool:
    """Verifica se a transicao de campanha e permitida."""
    return target in CAMPAIGN_TRANSITIONS.get(current, frozenset())


def ensure_transition(campaign_id: str, current: CampaignStatus, target: CampaignStatus) -> None:
    """
    Levanta se a transicao nao for permitida.

    Raises:
        CampaignAlreadyRunningError: RUNNING -> RUNNING
        CampaignStateError: demais transicoes invalidas
    """
    if can_transition(current, target):
        return
    if current == CampaignStatus.RUNNING and target == CampaignStatus.RUNNING:
        raise CampaignAlreadyRunningError(campaign_id)
    raise CampaignStateError(campaign_id, current.value, target.value)


def message_can_transition(current: MessageStatus, target: MessageStatus) -> bool:
    """Verifica se a transicao de mensagem e permitida (nunca regride)."""
    return target in MESSAGE_TRANSITIONS.get(current, frozenset())


def stats_delta(previous: MessageStatus, new: MessageStatus) -> Tuple[int, int]:
    """
    Efeito de uma transicao de mensagem nos contadores da campanha.

    Returns:
        (delta_sent, delta_failed)
    """
    if not message_can_transition(previous, new):
        return 0, 0

    if previous == MessageStatus.PENDING:
        if new in (MessageStatus.SENT, MessageStatus.DELIVERED):
            return 1, 0
        if new == MessageStatus.FAILED:
            return 0, 1

    if previous == MessageStatus.SENT and new == MessageStatus.FAILED:
        return -1, 1

    return 0, 0


class CampaignStateMachine:
    """Aplica transicoes de campanha no banco com compare-and-set."""

    def __init__(self, repository: "CampaignRepository"):
        self.repository = repository

    async def start(self, campaign: CampaignData, total: int) -> CampaignData:
        """
        DRAFT -> RUNNING, fixando stats.total.

        Args:
            campaign: Campanha carregada (status esperado DRAFT)
            total: Tamanho da audiencia no inicio

        Returns:
            Campanha em RUNNING

        Raises:
            CampaignAlreadyRunningError: outra chamada ja iniciou
            CampaignStateError: campanha em estado terminal
        """
        ensure_transition(campaign.id, campaign.status, CampaignStatus.RUNNING)

        updated = await self.repository.mark_running(campaign.id, total, utc_now())
        if updated is None:
            # Perdeu a corrida: descobrir o status atual para o erro certo
            current = await self.repository.find_by_id(campaign.id)
            if current is None:
                raise NotFoundError("Campanha", campaign.id)
            ensure_transition(campaign.id, current.status, CampaignStatus.RUNNING)
            raise CampaignAlreadyRunningError(campaign.id, current.status.value)

        logger.info(
            f"Campanha {campaign.id}: DRAFT -> RUNNING ({total} destinatarios)",
            extra={"campaign_id": campaign.id},
        )
        return updated

    async def complete(self, campaign_id: str) -> bool:
        """RUNNING -> COMPLETED."""
        return await self._finish(campaign_id, CampaignStatus.COMPLETED)

    async def fail(self, campaign_id: str, reason: Optional[str] = None) -> bool:
        """RUNNING -> FAILED, gravando o motivo."""
        return await self._finish(campaign_id, CampaignStatus.FAILED, reason)

    async def _finish(
        self,
        campaign_id: str,
        status: CampaignStatus,
        reason: Optional[str] = None,
    ) -> bool:
        applied = await self.repository.mark_finished(
            campaign_id, status, utc_now(), failure_reason=reason
        )
        if applied:
            logger.info(
                f"Campanha {campaign_id}: RUNNING -> {status.value}",
                extra={"campaign_id": campaign_id},
            )
        else:
            logger.warning(
                f"Campanha {campaign_id} nao estava RUNNING; {status.value} ignorado",
                extra={"campaign_id": campaign_id},
            )
        return applied
