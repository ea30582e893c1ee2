"""
Repository para o communication log (mensagens de campanha).

Cada linha e uma tentativa de entrega para um cliente em uma campanha.
Atualizacoes de status sao condicionais ao status atual para que o
disparo e os recibos do vendor nunca regridam uma mensagem.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from crm.core.timezone import iso_utc
from crm.services.campaigns.types import MessageData, MessageStatus
from crm.services.delivery.receipts import DeliveryReceipt, ReceiptTransition
from .base import BaseRepository

logger = logging.getLogger(__name__)

COUNT_PAGE_SIZE = 1000


class MessageRepository(BaseRepository[MessageData]):
    """Repository para operacoes de mensagens no banco."""

    @property
    def table_name(self) -> str:
        return "communication_logs"

    async def find_by_id(self, id: str) -> Optional[MessageData]:
        """Busca mensagem pela chave primaria."""
        response = self._execute(
            self.db.table(self.table_name).select("*").eq("id", id),
            "buscar mensagem",
            id=id,
        )
        if response.data:
            return MessageData.from_db_row(response.data[0])
        return None

    async def find_by_message_id(self, message_id: str) -> Optional[MessageData]:
        """Busca mensagem pelo id de correlacao com o vendor."""
        response = self._execute(
            self.db.table(self.table_name).select("*").eq("message_id", message_id),
            "buscar mensagem",
            message_id=message_id,
        )
        if response.data:
            return MessageData.from_db_row(response.data[0])
        return None

    async def bulk_insert(self, messages: Sequence[MessageData]) -> int:
        """
        Insere todas as mensagens de uma campanha em uma unica operacao.

        Args:
            messages: Mensagens PENDING (ou FAILED pre-marcadas)

        Returns:
            Quantidade inserida
        """
        if not messages:
            return 0

        rows = [m.to_insert_row() for m in messages]
        response = self._execute(
            self.db.table(self.table_name).insert(rows),
            "inserir mensagens",
            total=len(rows),
        )
        inserted = len(response.data or [])
        if inserted != len(rows):
            logger.warning(f"Insert parcial no communication log: {inserted}/{len(rows)}")
        return inserted

    async def list_by_campaign(
        self,
        campaign_id: str,
        status: Optional[MessageStatus] = None,
    ) -> List[MessageData]:
        """Lista mensagens de uma campanha, opcionalmente por status."""
        query = self.db.table(self.table_name).select("*").eq("campaign_id", campaign_id)
        if status is not None:
            query = query.eq("status", status.value)

        response = self._execute(
            query.order("created_at"),
            "listar mensagens",
            campaign_id=campaign_id,
        )
        return [MessageData.from_db_row(row) for row in (response.data or [])]

    async def mark_sent(
        self,
        message_id: str,
        vendor_response: dict,
        sent_at: datetime,
        attempts: int = 1,
    ) -> bool:
        """
        PENDING -> SENT apos aceite do vendor.

        A RPC mark_message_sent atualiza a mensagem e soma 1 em stats.sent
        na mesma transacao; um recibo aplicado entre as duas escritas nao
        consegue contar a mensagem de novo.

        Returns:
            True se a linha foi atualizada (False se um recibo chegou antes)
        """
        response = self._execute(
            self.db.rpc(
                "mark_message_sent",
                {
                    "p_message_id": message_id,
                    "p_vendor_response": vendor_response,
                    "p_sent_at": iso_utc(sent_at),
                    "p_attempts": attempts,
                },
            ),
            "marcar mensagem enviada",
            message_id=message_id,
        )
        return bool(response.data)

    async def mark_failed(
        self,
        message_id: str,
        error_payload: dict,
        attempts: int = 1,
    ) -> bool:
        """
        PENDING -> FAILED apos rejeicao do vendor (soma 1 em stats.failed
        na mesma transacao).

        Returns:
            True se a linha foi atualizada
        """
        response = self._execute(
            self.db.rpc(
                "mark_message_failed",
                {
                    "p_message_id": message_id,
                    "p_vendor_response": error_payload,
                    "p_attempts": attempts,
                },
            ),
            "marcar mensagem com falha",
            message_id=message_id,
        )
        return bool(response.data)

    async def apply_receipts(self, receipts: Sequence[DeliveryReceipt]) -> List[ReceiptTransition]:
        """
        Aplica um lote de recibos em uma unica chamada (RPC).

        A funcao no banco so aplica transicoes permitidas, seta delivered_at
        para DELIVERED e grava vendor_response.delivery_status. Recibos de
        mensagens inexistentes nao retornam linha.

        Returns:
            Uma transicao por recibo de mensagem conhecida
        """
        if not receipts:
            return []

        response = self._execute(
            self.db.rpc(
                "apply_delivery_receipts",
                {"p_receipts": [r.to_rpc_payload() for r in receipts]},
            ),
            "aplicar recibos",
            total=len(receipts),
        )
        return [ReceiptTransition.from_db_row(row) for row in (response.data or [])]

    async def count_by_status(self, campaign_id: str) -> Dict[str, int]:
        """
        Conta mensagens da campanha por status (minusculo).

        Returns:
            Dict tipo {"sent": 10, "delivered": 5, "failed": 1}
        """
        counts: Dict[str, int] = {}
        start = 0

        while True:
            response = self._execute(
                self.db.table(self.table_name)
                .select("status")
                .eq("campaign_id", campaign_id)
                .order("id")
                .range(start, start + COUNT_PAGE_SIZE - 1),
                "contar mensagens",
                campaign_id=campaign_id,
            )
            rows = response.data or []
            for row in rows:
                key = str(row.get("status", "")).lower()
                counts[key] = counts.get(key, 0) + 1

            if len(rows) < COUNT_PAGE_SIZE:
                break
            start += COUNT_PAGE_SIZE

        return counts
