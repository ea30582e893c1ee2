"""
Reconciliador de recibos de entrega.

Recibos entram por submit() (sincrono, so enfileira) e sao aplicados em
lote no communication log:
- a cada `flush_interval` segundos (timer)
- imediatamente quando a fila atinge `batch_size`
- no stop() (flush final)

Falha de armazenamento devolve o lote inteiro para o inicio da fila, na
ordem original, para a proxima tentativa. Os contadores da campanha so
mudam por transicoes efetivamente aplicadas (recibo duplicado e no-op).
"""
import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Deque, Dict, List, Optional, Union

from crm.core.config import settings
from crm.core.exceptions import DatabaseError
from crm.core.tasks import safe_create_task
from crm.services.campaigns.state import stats_delta
from .receipts import DeliveryReceipt, FlushResult

if TYPE_CHECKING:
    from crm.repositories.campaign import CampaignRepository
    from crm.repositories.message import MessageRepository

logger = logging.getLogger(__name__)


class ReceiptReconciler:
    """
    Fila de recibos com flush em lote.

    Uso:
        async with ReceiptReconciler(message_repo, campaign_repo) as reconciler:
            reconciler.submit({"messageId": "...", "status": "DELIVERED"})
    """

    def __init__(
        self,
        message_repository: "MessageRepository",
        campaign_repository: "CampaignRepository",
        batch_size: Optional[int] = None,
        flush_interval: Optional[float] = None,
    ):
        self.messages = message_repository
        self.campaigns = campaign_repository
        self.batch_size = batch_size or settings.RECEIPT_BATCH_SIZE
        self.flush_interval = flush_interval or settings.RECEIPT_FLUSH_INTERVAL_SECONDS

        self._queue: Deque[DeliveryReceipt] = deque()
        self._flush_lock = asyncio.Lock()
        # campaign_id -> [delta_sent, delta_failed] ainda nao gravados
        self._pending_stats: Dict[str, List[int]] = {}
        self._timer: Optional[asyncio.Task] = None
        self._flush_task: Optional[asyncio.Task] = None

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def pending_stats(self) -> Dict[str, tuple]:
        """Deltas de contadores aguardando gravacao."""
        return {cid: tuple(delta) for cid, delta in self._pending_stats.items()}

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def submit(self, payload: Union[dict, DeliveryReceipt]) -> DeliveryReceipt:
        """
        Enfileira um recibo.

        Args:
            payload: Payload do vendor ou DeliveryReceipt

        Returns:
            DeliveryReceipt enfileirado

        Raises:
            ValidationError: payload sem messageId ou com status invalido
        """
        receipt = payload if isinstance(payload, DeliveryReceipt) else DeliveryReceipt.from_payload(payload)
        self._queue.append(receipt)

        if len(self._queue) >= self.batch_size:
            self._schedule_flush()
        return receipt

    def _schedule_flush(self) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Sem loop: o proximo flush do timer ou do stop() processa
            return
        self._flush_task = safe_create_task(self.flush(), name="receipt_flush")

    async def start(self) -> None:
        """Inicia o timer de flush."""
        if self.running:
            return
        self._timer = safe_create_task(self._timer_loop(), name="receipt_reconciler")
        logger.info(
            f"Reconciliador de recibos iniciado (lote={self.batch_size}, "
            f"intervalo={self.flush_interval}s)"
        )

    async def stop(self) -> FlushResult:
        """Para o timer e faz o flush final."""
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task

        result = await self.flush()
        logger.info(
            f"Reconciliador de recibos parado ({self.queue_size} recibos na fila)"
        )
        return result

    async def __aenter__(self) -> "ReceiptReconciler":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            try:
                await self.flush()
            except Exception as e:
                logger.error(f"Erro inesperado no flush de recibos: {e}", exc_info=True)

    async def flush(self) -> FlushResult:
        """
        Aplica todos os recibos enfileirados, lote a lote.

        Returns:
            FlushResult do ciclo
        """
        async with self._flush_lock:
            result = FlushResult()

            while self._queue:
                batch = [self._queue.popleft() for _ in range(min(self.batch_size, len(self._queue)))]
                batch_result = await self._apply_batch(batch)
                result.merge(batch_result)
                if batch_result.requeued:
                    break

            result.campaigns_updated = await self._apply_pending_stats()

            if result.processed or result.requeued:
                logger.info(
                    f"Flush de recibos: {result.processed} processados, {result.applied} aplicados, "
                    f"{result.ignored} ignorados, {result.requeued} reenfileirados",
                    extra={"flush": result.to_dict()},
                )
            return result

    async def _apply_batch(self, batch: List[DeliveryReceipt]) -> FlushResult:
        try:
            transitions = await self.messages.apply_receipts(batch)
        except DatabaseError as e:
            self._queue.extendleft(reversed(batch))
            logger.warning(
                f"Falha ao aplicar {len(batch)} recibos, lote reenfileirado: {e}"
            )
            return FlushResult(requeued=len(batch), error=str(e))

        known = {t.message_id for t in transitions}
        for receipt in batch:
            if receipt.message_id not in known:
                logger.warning(f"Recibo para mensagem desconhecida ignorado: {receipt.message_id}")

        applied = 0
        for transition in transitions:
            if not transition.applied:
                continue
            applied += 1
            delta_sent, delta_failed = stats_delta(transition.previous_status, transition.status)
            if delta_sent or delta_failed:
                delta = self._pending_stats.setdefault(transition.campaign_id, [0, 0])
                delta[0] += delta_sent
                delta[1] += delta_failed

        return FlushResult(
            processed=len(batch),
            applied=applied,
            ignored=len(batch) - applied,
        )

    async def _apply_pending_stats(self) -> int:
        """Grava um incremento por campanha; falhas ficam para o proximo flush."""
        updated = 0
        for campaign_id, (delta_sent, delta_failed) in list(self._pending_stats.items()):
            if not delta_sent and not delta_failed:
                del self._pending_stats[campaign_id]
                continue
            try:
                await self.campaigns.increment_stats(
                    campaign_id, sent=delta_sent, failed=delta_failed
                )
            except DatabaseError as e:
                logger.warning(
                    f"Falha ao atualizar contadores da campanha {campaign_id}, "
                    f"tentando no proximo flush: {e}",
                    extra={"campaign_id": campaign_id},
                )
                continue
            del self._pending_stats[campaign_id]
            updated += 1
        return updated
