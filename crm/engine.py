"""
Composicao do motor de campanhas.

Liga repositories, resolver, servicos, dispatcher, vendor e reconciliador
em uma unica instancia com ciclo de vida start()/stop().

Uso:
    async with MarketingEngine.from_settings() as engine:
        segment = await engine.segments.create_segment("VIPs", rules, "ana")
        campaign = await engine.campaigns.create_campaign(
            "Black Friday", segment.id, "Oi {{name}}!", "ana", start=True
        )
"""
import logging
from typing import Any, Callable, Optional, Union

from crm.repositories.deps import (
    create_campaign_repo,
    create_customer_repo,
    create_message_repo,
    create_segment_repo,
)
from crm.services.campaigns.dispatcher import CampaignDispatcher
from crm.services.campaigns.service import CampaignService
from crm.services.delivery.receipts import DeliveryReceipt
from crm.services.delivery.reconciler import ReceiptReconciler
from crm.services.segmentation.resolver import AudienceResolver
from crm.services.segmentation.service import SegmentService
from crm.services.vendor import VendorProvider, create_vendor

logger = logging.getLogger(__name__)


class MarketingEngine:
    """Raiz de composicao: um objeto por processo."""

    def __init__(
        self,
        db: Any,
        vendor: Optional[VendorProvider] = None,
        lock_factory: Optional[Callable[[str], Any]] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        send_concurrency: Optional[int] = None,
        receipt_batch_size: Optional[int] = None,
        receipt_flush_interval: Optional[float] = None,
    ):
        """
        Args:
            db: Cliente de banco (Supabase ou mock)
            vendor: Vendor de mensagens (default: VENDOR_MODE das settings)
            lock_factory: Fabrica do lock de disparo (default: DistributedLock)
        """
        self.customer_repo = create_customer_repo(db)
        self.segment_repo = create_segment_repo(db)
        self.campaign_repo = create_campaign_repo(db)
        self.message_repo = create_message_repo(db)

        self.reconciler = ReceiptReconciler(
            self.message_repo,
            self.campaign_repo,
            batch_size=receipt_batch_size,
            flush_interval=receipt_flush_interval,
        )

        self._owns_vendor = vendor is None
        self.vendor = vendor or create_vendor(receipt_callback=self.submit_receipt)

        self.resolver = AudienceResolver(self.customer_repo)
        self.segments = SegmentService(self.segment_repo, self.resolver)
        self.dispatcher = CampaignDispatcher(
            self.campaign_repo,
            self.segment_repo,
            self.message_repo,
            self.customer_repo,
            self.vendor,
            batch_size=batch_size,
            batch_delay=batch_delay,
            send_concurrency=send_concurrency,
            lock_factory=lock_factory,
        )
        self.campaigns = CampaignService(
            self.campaign_repo,
            self.segment_repo,
            self.message_repo,
            self.dispatcher,
        )

    @classmethod
    def from_settings(cls, **kwargs) -> "MarketingEngine":
        """Cria engine com o cliente Supabase configurado."""
        from crm.services.supabase import get_supabase_client

        return cls(get_supabase_client(), **kwargs)

    def submit_receipt(self, payload: Union[dict, DeliveryReceipt]) -> DeliveryReceipt:
        """Entrada dos recibos de entrega do vendor."""
        return self.reconciler.submit(payload)

    async def start(self) -> None:
        await self.reconciler.start()
        logger.info("Motor de campanhas iniciado")

    async def stop(self) -> None:
        """Aguarda disparos e recibos pendentes, depois faz o flush final."""
        await self.dispatcher.drain()
        await self.vendor.drain()
        await self.reconciler.stop()
        if self._owns_vendor:
            await self.vendor.aclose()
        logger.info("Motor de campanhas parado")

    async def __aenter__(self) -> "MarketingEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False
