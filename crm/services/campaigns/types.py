"""
Tipos e enums para campanhas e mensagens (communication log).
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from crm.core.timezone import parse_timestamp


class CampaignStatus(str, Enum):
    """Status possiveis de uma campanha."""

    DRAFT = "DRAFT"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (CampaignStatus.COMPLETED, CampaignStatus.FAILED)


class MessageStatus(str, Enum):
    """Status de uma mensagem individual."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    DELIVERED = "DELIVERED"


@dataclass
class CampaignStats:
    """Contadores agregados da campanha (sent + failed <= total)."""

    total: int = 0
    sent: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.sent + self.failed

    @property
    def success_rate(self) -> float:
        """Percentual de envios com sucesso sobre o total."""
        if not self.total:
            return 0.0
        return round(self.sent / self.total * 100, 2)

    def to_dict(self) -> dict:
        return {"total": self.total, "sent": self.sent, "failed": self.failed}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CampaignStats":
        if not data:
            return cls()
        return cls(
            total=int(data.get("total") or 0),
            sent=int(data.get("sent") or 0),
            failed=int(data.get("failed") or 0),
        )


@dataclass
class CampaignData:
    """Dados de uma campanha."""

    id: str
    name: str
    segment_id: str
    message_template: str
    created_by: str
    status: CampaignStatus = CampaignStatus.DRAFT
    audience_size: int = 0
    stats: CampaignStats = field(default_factory=CampaignStats)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    @classmethod
    def from_db_row(cls, row: dict) -> "CampaignData":
        """Cria a partir de linha do banco."""
        status_raw = row.get("status", CampaignStatus.DRAFT.value)
        try:
            status = CampaignStatus(status_raw)
        except ValueError:
            status = CampaignStatus.DRAFT

        # Contadores ficam em colunas proprias para incremento atomico
        stats = CampaignStats(
            total=int(row.get("stats_total") or 0),
            sent=int(row.get("stats_sent") or 0),
            failed=int(row.get("stats_failed") or 0),
        )

        return cls(
            id=str(row["id"]),
            name=row.get("name", ""),
            segment_id=str(row.get("segment_id", "")),
            message_template=row.get("message_template", ""),
            created_by=row.get("created_by", ""),
            status=status,
            audience_size=int(row.get("audience_size") or 0),
            stats=stats,
            started_at=parse_timestamp(row.get("started_at")),
            completed_at=parse_timestamp(row.get("completed_at")),
            created_at=parse_timestamp(row.get("created_at")),
            failure_reason=row.get("failure_reason"),
        )

    def to_dict(self) -> dict:
        """Converte para dicionario."""
        return {
            "id": self.id,
            "name": self.name,
            "segment_id": self.segment_id,
            "message_template": self.message_template,
            "created_by": self.created_by,
            "status": self.status.value,
            "audience_size": self.audience_size,
            "stats": self.stats.to_dict(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "failure_reason": self.failure_reason,
        }


@dataclass
class MessageData:
    """Entrada do communication log: uma tentativa de entrega por cliente."""

    message_id: str
    campaign_id: str
    customer_id: str
    rendered_body: str
    status: MessageStatus = MessageStatus.PENDING
    delivery_attempts: int = 0
    vendor_response: Optional[dict] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    id: Optional[str] = None

    @classmethod
    def from_db_row(cls, row: dict) -> "MessageData":
        try:
            status = MessageStatus(row.get("status", MessageStatus.PENDING.value))
        except ValueError:
            status = MessageStatus.PENDING

        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            message_id=row["message_id"],
            campaign_id=str(row.get("campaign_id", "")),
            customer_id=str(row.get("customer_id", "")),
            rendered_body=row.get("rendered_body", ""),
            status=status,
            delivery_attempts=int(row.get("delivery_attempts") or 0),
            vendor_response=row.get("vendor_response"),
            sent_at=parse_timestamp(row.get("sent_at")),
            delivered_at=parse_timestamp(row.get("delivered_at")),
        )

    def to_insert_row(self) -> dict:
        """Linha para o insert em lote."""
        return {
            "message_id": self.message_id,
            "campaign_id": self.campaign_id,
            "customer_id": self.customer_id,
            "rendered_body": self.rendered_body,
            "status": self.status.value,
            "delivery_attempts": self.delivery_attempts,
            "vendor_response": self.vendor_response,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }


@dataclass
class CampaignReport:
    """Relatorio de entrega de uma campanha."""

    campaign_id: str
    name: str
    status: CampaignStatus
    total: int
    sent: int
    failed: int
    success_rate: float
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    delivery_stats: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "campaign_id": self.campaign_id,
            "name": self.name,
            "status": self.status.value,
            "total": self.total,
            "sent": self.sent,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "delivery_stats": dict(self.delivery_stats),
        }
