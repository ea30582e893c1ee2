"""
Dispatcher de campanhas.

Fluxo de start_campaign:
1. Carrega campanha e segmento (status precisa ser DRAFT)
2. Sob lock distribuido (sem Redis, so o compare-and-set do passo 3):
   monta uma mensagem PENDING por cliente da audiencia
3. DRAFT -> RUNNING (stats.total = tamanho da audiencia)
4. Insere todas as mensagens de uma vez
5. Dispara o envio em background e retorna a campanha RUNNING

O envio roda em lotes com pausa entre lotes (backpressure contra o
vendor). Falha de uma mensagem nunca derruba a campanha; qualquer outro
erro no loop leva a campanha para FAILED.
"""
import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from crm.core.config import settings
from crm.core.distributed_lock import DistributedLock, LockBackendError, LockNotAcquiredError
from crm.core.exceptions import (
    CampaignAlreadyRunningError,
    DispatchLoopError,
    NotFoundError,
    VendorError,
)
from crm.core.tasks import safe_create_task
from crm.core.timezone import utc_now
from crm.services.segmentation.types import SegmentData
from .state import CampaignStateMachine, ensure_transition
from .templates import render_template
from .types import CampaignData, CampaignStatus, MessageData, MessageStatus

if TYPE_CHECKING:
    from crm.repositories.campaign import CampaignRepository
    from crm.repositories.customer import CustomerRepository
    from crm.repositories.message import MessageRepository
    from crm.repositories.segment import SegmentRepository
    from crm.services.vendor import VendorProvider

logger = logging.getLogger(__name__)

CUSTOMER_NOT_FOUND = "customer_not_found"
DISPATCH_TASK_NAME = "campaign_dispatch"


def _default_lock_factory(key: str) -> DistributedLock:
    return DistributedLock(key, timeout=settings.CAMPAIGN_LOCK_TIMEOUT_SECONDS)


class CampaignDispatcher:
    """Inicia campanhas e envia mensagens em background."""

    def __init__(
        self,
        campaign_repository: "CampaignRepository",
        segment_repository: "SegmentRepository",
        message_repository: "MessageRepository",
        customer_repository: "CustomerRepository",
        vendor: "VendorProvider",
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        send_concurrency: Optional[int] = None,
        lock_factory: Optional[Callable[[str], Any]] = None,
    ):
        self.campaigns = campaign_repository
        self.segments = segment_repository
        self.messages = message_repository
        self.customers = customer_repository
        self.vendor = vendor
        self.state = CampaignStateMachine(campaign_repository)

        self.batch_size = batch_size or settings.DISPATCH_BATCH_SIZE
        self.batch_delay = settings.DISPATCH_BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
        self.send_concurrency = max(1, send_concurrency or settings.DISPATCH_SEND_CONCURRENCY)
        self.lock_factory = lock_factory or _default_lock_factory

        self._tasks: Dict[str, asyncio.Task] = {}
        # campaign_id -> erro que derrubou o loop de envio
        self._errors: Dict[str, str] = {}

    async def start_campaign(self, campaign_id: str) -> CampaignData:
        """
        Inicia o disparo de uma campanha em DRAFT.

        Retorna logo apos a transicao para RUNNING e a criacao das
        mensagens; o envio continua em background.

        Args:
            campaign_id: ID da campanha

        Returns:
            CampaignData em RUNNING

        Raises:
            NotFoundError: campanha ou segmento inexistente
            CampaignAlreadyRunningError: campanha ja iniciada
            CampaignStateError: campanha em estado terminal
            DispatchLoopError: falha ao criar as mensagens (campanha -> FAILED)
        """
        campaign = await self.campaigns.find_by_id(campaign_id)
        if campaign is None:
            raise NotFoundError("Campanha", campaign_id)

        ensure_transition(campaign.id, campaign.status, CampaignStatus.RUNNING)

        segment = await self.segments.find_by_id(campaign.segment_id)
        if segment is None:
            raise NotFoundError("Segmento", campaign.segment_id)

        lock = self.lock_factory(f"campaign_dispatch:{campaign.id}")
        try:
            async with lock:
                return await self._initiate(campaign, segment)
        except LockBackendError as e:
            # Sem Redis o compare-and-set DRAFT -> RUNNING ainda garante um unico start
            logger.warning(
                f"Lock de disparo indisponivel para campanha {campaign.id} ({e.__cause__}), "
                f"seguindo so com o compare-and-set",
                extra={"campaign_id": campaign.id},
            )
            return await self._initiate(campaign, segment)
        except LockNotAcquiredError as e:
            logger.warning(
                f"Campanha {campaign.id} ja esta sendo iniciada por outro processo",
                extra={"campaign_id": campaign.id},
            )
            raise CampaignAlreadyRunningError(campaign.id, campaign.status.value) from e

    async def _initiate(self, campaign: CampaignData, segment: SegmentData) -> CampaignData:
        audience_ids = list(dict.fromkeys(segment.customer_ids))
        messages = await self._build_messages(campaign, audience_ids)

        running = await self.state.start(campaign, total=len(audience_ids))

        try:
            await self.messages.bulk_insert(messages)
        except Exception as e:
            logger.error(
                f"Erro ao criar mensagens da campanha {campaign.id}: {e}",
                extra={"campaign_id": campaign.id},
            )
            await self._fail_campaign(campaign.id, f"Falha ao criar mensagens: {e}")
            raise DispatchLoopError(campaign.id, e) from e

        pending = [m for m in messages if m.status == MessageStatus.PENDING]
        prefailed = len(messages) - len(pending)

        self._errors.pop(campaign.id, None)
        task = safe_create_task(
            self._run(campaign.id, pending, prefailed),
            name=DISPATCH_TASK_NAME,
            on_error=lambda error, cid=campaign.id: self._record_error(cid, error),
            context={"campaign_id": campaign.id},
        )
        self._tasks[campaign.id] = task
        task.add_done_callback(lambda _t, cid=campaign.id: self._tasks.pop(cid, None))

        logger.info(
            f"Campanha {campaign.id} iniciada: {len(pending)} mensagens para enviar, "
            f"{prefailed} sem cliente",
            extra={"campaign_id": campaign.id},
        )
        return running

    async def _build_messages(self, campaign: CampaignData, audience_ids: List[str]) -> List[MessageData]:
        """Uma mensagem por cliente; clientes que sumiram viram FAILED."""
        customers = await self.customers.find_many(audience_ids)
        by_id = {c.id: c for c in customers}

        messages = []
        for customer_id in audience_ids:
            customer = by_id.get(customer_id)
            if customer is None:
                messages.append(MessageData(
                    message_id=str(uuid.uuid4()),
                    campaign_id=campaign.id,
                    customer_id=customer_id,
                    rendered_body="",
                    status=MessageStatus.FAILED,
                    vendor_response={"error": CUSTOMER_NOT_FOUND},
                ))
                continue

            messages.append(MessageData(
                message_id=str(uuid.uuid4()),
                campaign_id=campaign.id,
                customer_id=customer_id,
                rendered_body=render_template(campaign.message_template, customer.attributes()),
            ))

        missing = len(audience_ids) - len(by_id)
        if missing > 0:
            logger.warning(
                f"Campanha {campaign.id}: {missing} clientes da audiencia nao existem mais",
                extra={"campaign_id": campaign.id},
            )
        return messages

    async def _run(self, campaign_id: str, pending: Sequence[MessageData], prefailed: int) -> None:
        """Loop de envio em lotes. Termina a campanha como COMPLETED ou FAILED."""
        try:
            if prefailed:
                await self.campaigns.increment_stats(campaign_id, failed=prefailed)

            total_batches = (len(pending) + self.batch_size - 1) // self.batch_size
            for index in range(total_batches):
                if index > 0 and self.batch_delay > 0:
                    await asyncio.sleep(self.batch_delay)

                batch = pending[index * self.batch_size:(index + 1) * self.batch_size]
                sent = await self._send_batch(campaign_id, batch)
                logger.info(
                    f"Campanha {campaign_id}: lote {index + 1}/{total_batches} "
                    f"({sent}/{len(batch)} aceitos)",
                    extra={"campaign_id": campaign_id},
                )

            await self.state.complete(campaign_id)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"Erro no loop de disparo da campanha {campaign_id}: {e}",
                exc_info=True,
                extra={"campaign_id": campaign_id},
            )
            await self._fail_campaign(campaign_id, str(e))
            raise DispatchLoopError(campaign_id, e) from e

    async def _send_batch(self, campaign_id: str, batch: Sequence[MessageData]) -> int:
        semaphore = asyncio.Semaphore(self.send_concurrency)
        results = await asyncio.gather(
            *(self._send_one(campaign_id, message, semaphore) for message in batch),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return sum(1 for result in results if result)

    async def _send_one(
        self,
        campaign_id: str,
        message: MessageData,
        semaphore: asyncio.Semaphore,
    ) -> bool:
        async with semaphore:
            try:
                result = await self.vendor.send(
                    message.rendered_body, message.customer_id, message.message_id
                )
            except VendorError as e:
                logger.warning(
                    f"Falha no envio da mensagem {message.message_id}: {e.message}",
                    extra={"campaign_id": campaign_id, "customer_id": message.customer_id},
                )
                # Status e contador mudam juntos (so a partir de PENDING)
                await self.messages.mark_failed(
                    message.message_id,
                    {"error": e.message, "details": e.details},
                    attempts=1,
                )
                return False

            await self.messages.mark_sent(
                message.message_id,
                result.to_dict(),
                sent_at=utc_now(),
                attempts=1,
            )
            return True

    async def _fail_campaign(self, campaign_id: str, reason: str) -> None:
        try:
            await self.state.fail(campaign_id, reason)
        except Exception as e:
            logger.error(
                f"Nao foi possivel marcar campanha {campaign_id} como FAILED: {e}",
                extra={"campaign_id": campaign_id},
            )

    def _record_error(self, campaign_id: str, error: Exception) -> None:
        self._errors[campaign_id] = str(error)

    def dispatch_error(self, campaign_id: str) -> Optional[str]:
        """Erro que levou o envio da campanha a FAILED (None se nao houve)."""
        return self._errors.get(campaign_id)

    def is_dispatching(self, campaign_id: str) -> bool:
        """True enquanto o envio da campanha estiver em andamento."""
        task = self._tasks.get(campaign_id)
        return task is not None and not task.done()

    async def wait(self, campaign_id: str) -> None:
        """Aguarda o fim do envio de uma campanha (no-op se nao houver)."""
        task = self._tasks.get(campaign_id)
        if task is not None:
            await task

    async def drain(self) -> None:
        """Aguarda todos os envios em andamento (shutdown)."""
        tasks = list(self._tasks.values())
        if tasks:
            logger.info(f"Aguardando {len(tasks)} disparo(s) em andamento")
            await asyncio.gather(*tasks, return_exceptions=True)
