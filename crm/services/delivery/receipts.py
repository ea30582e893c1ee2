"""
Recibos de entrega do vendor.

Recibos chegam fora de ordem, podem ser duplicados e usam vocabulario
proprio de cada vendor. Aqui eles sao normalizados para MessageStatus.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from crm.core.exceptions import ValidationError
from crm.core.timezone import parse_timestamp, utc_now
from crm.services.campaigns.types import MessageStatus


# Vocabulario de status aceito nos recibos
RECEIPT_STATUS_MAP = {
    "SENT": MessageStatus.SENT,
    "ACCEPTED": MessageStatus.SENT,
    "DELIVERED": MessageStatus.DELIVERED,
    "DELIVERY_ACK": MessageStatus.DELIVERED,
    "SERVER_ACK": MessageStatus.DELIVERED,
    "READ": MessageStatus.DELIVERED,
    "FAILED": MessageStatus.FAILED,
    "ERROR": MessageStatus.FAILED,
    "REJECTED": MessageStatus.FAILED,
    "UNDELIVERED": MessageStatus.FAILED,
}


def normalize_receipt_status(raw: Any) -> MessageStatus:
    """
    Normaliza status do vendor para MessageStatus.

    Raises:
        ValidationError: status ausente ou desconhecido
    """
    if isinstance(raw, MessageStatus):
        if raw == MessageStatus.PENDING:
            raise ValidationError("Recibo nao pode voltar mensagem para PENDING")
        return raw

    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("Recibo sem status", details={"status": raw})

    status = RECEIPT_STATUS_MAP.get(raw.strip().upper())
    if status is None:
        raise ValidationError("Status de recibo desconhecido", details={"status": raw})
    return status


@dataclass(frozen=True)
class DeliveryReceipt:
    """Notificacao assincrona do vendor sobre uma mensagem."""

    message_id: str
    status: MessageStatus
    timestamp: datetime
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict) -> "DeliveryReceipt":
        """
        Cria recibo a partir do payload do vendor.

        Aceita messageId/message_id, status, timestamp e
        metadata/vendorMetadata.

        Raises:
            ValidationError: payload sem id ou com status invalido
        """
        if not isinstance(payload, dict):
            raise ValidationError("Payload de recibo deve ser um objeto")

        message_id = payload.get("messageId") or payload.get("message_id")
        if not message_id:
            raise ValidationError("Recibo sem messageId", details={"payload": payload})

        status = normalize_receipt_status(payload.get("status"))

        try:
            timestamp = parse_timestamp(payload.get("timestamp")) or utc_now()
        except ValueError as e:
            raise ValidationError(
                "Timestamp de recibo invalido",
                details={"message_id": str(message_id)},
                original_error=e,
            ) from e

        metadata = payload.get("metadata") or payload.get("vendorMetadata") or {}
        if not isinstance(metadata, dict):
            metadata = {"value": metadata}

        return cls(
            message_id=str(message_id),
            status=status,
            timestamp=timestamp,
            metadata=metadata,
        )

    def to_rpc_payload(self) -> dict:
        """Formato usado pela RPC apply_delivery_receipts."""
        return {
            "message_id": self.message_id,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class ReceiptTransition:
    """
    Resultado de um recibo aplicado no communication log.

    applied=False quando a transicao nao era permitida (status final,
    duplicado ou regressao).
    """

    message_id: str
    campaign_id: str
    previous_status: MessageStatus
    status: MessageStatus
    applied: bool

    @classmethod
    def from_db_row(cls, row: dict) -> "ReceiptTransition":
        return cls(
            message_id=str(row["message_id"]),
            campaign_id=str(row.get("campaign_id", "")),
            previous_status=MessageStatus(row["previous_status"]),
            status=MessageStatus(row["status"]),
            applied=bool(row.get("applied")),
        )


@dataclass
class FlushResult:
    """Resumo de um flush do reconciliador."""

    processed: int = 0
    applied: int = 0
    ignored: int = 0
    requeued: int = 0
    campaigns_updated: int = 0
    error: Optional[str] = None

    def merge(self, other: "FlushResult") -> None:
        self.processed += other.processed
        self.applied += other.applied
        self.ignored += other.ignored
        self.requeued += other.requeued
        self.campaigns_updated += other.campaigns_updated
        if other.error:
            self.error = other.error

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "applied": self.applied,
            "ignored": self.ignored,
            "requeued": self.requeued,
            "campaigns_updated": self.campaigns_updated,
            "error": self.error,
        }
