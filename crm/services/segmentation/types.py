"""
Tipos de segmentacao: segmento persistido e resultado de audiencia.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, List, Optional

from crm.core.timezone import parse_timestamp


@dataclass(frozen=True)
class AudienceStats:
    """Estatisticas descritivas da audiencia (nao entram na logica booleana)."""

    count: int = 0
    average_spend: float = 0.0
    average_orders: float = 0.0

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "average_spend": self.average_spend,
            "average_orders": self.average_orders,
        }


@dataclass(frozen=True)
class AudienceResult:
    """Conjunto deduplicado de clientes + estatisticas."""

    customer_ids: FrozenSet[str] = frozenset()
    stats: AudienceStats = field(default_factory=AudienceStats)

    @property
    def count(self) -> int:
        return len(self.customer_ids)

    def sorted_ids(self) -> List[str]:
        return sorted(self.customer_ids)


@dataclass
class SegmentData:
    """Segmento: definicao de regras + ultima audiencia resolvida."""

    id: str
    name: str
    rules: dict
    customer_ids: List[str]
    created_by: str
    condition_string: str = ""
    audience_size: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_db_row(cls, row: dict) -> "SegmentData":
        """Cria a partir de linha do banco."""
        customer_ids = [str(cid) for cid in (row.get("customer_ids") or [])]
        return cls(
            id=str(row["id"]),
            name=row.get("name", ""),
            rules=row.get("rules") or {},
            customer_ids=customer_ids,
            created_by=row.get("created_by", ""),
            condition_string=row.get("condition_string") or "",
            audience_size=int(row.get("audience_size") or len(customer_ids)),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "rules": self.rules,
            "condition_string": self.condition_string,
            "customer_ids": list(self.customer_ids),
            "audience_size": self.audience_size,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
