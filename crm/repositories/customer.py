"""
Repository para Clientes.

O sistema de registro dos clientes e externo: o motor de campanhas so le
snapshots (consultas por predicado de atributo e projecoes).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional, Set

from crm.core.config import settings
from crm.core.timezone import parse_timestamp
from .base import BaseRepository, chunked

logger = logging.getLogger(__name__)

# Operadores de predicado suportados pelo PostgREST
PREDICATE_OPERATORS = ("gt", "lt", "gte", "lte", "eq")

# Projecao minima para estatisticas de audiencia
STATS_COLUMNS = ("id", "total_spend", "total_orders")


def _non_negative_float(value: Any) -> float:
    try:
        return max(0.0, float(value or 0))
    except (TypeError, ValueError):
        return 0.0


def _non_negative_int(value: Any) -> int:
    try:
        return max(0, int(float(value or 0)))
    except (TypeError, ValueError):
        return 0


def serialize_filter_value(value: Any) -> Any:
    """Converte valor de regra para o formato esperado pelo filtro."""
    if isinstance(value, datetime):
        return value.isoformat()
    # Colunas inteiras rejeitam "0.0"
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


@dataclass
class Customer:
    """
    Entidade Cliente (snapshot somente leitura).

    avg_order_value e derivado: total_spend / total_orders (0 sem pedidos).
    """

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    total_spend: float = 0.0
    total_orders: int = 0
    visits: int = 0
    last_order_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def avg_order_value(self) -> float:
        if self.total_orders <= 0:
            return 0.0
        return self.total_spend / self.total_orders

    @classmethod
    def from_dict(cls, data: dict) -> "Customer":
        """Cria Customer a partir de dict do banco."""
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name"),
            email=data.get("email"),
            phone=data.get("phone"),
            location=data.get("location"),
            total_spend=_non_negative_float(data.get("total_spend")),
            total_orders=_non_negative_int(data.get("total_orders")),
            visits=_non_negative_int(data.get("visits")),
            last_order_date=parse_timestamp(data.get("last_order_date")),
            created_at=parse_timestamp(data.get("created_at")),
        )

    def attributes(self) -> dict:
        """Atributos disponiveis para personalizacao de mensagens."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "location": self.location,
            "total_spend": self.total_spend,
            "total_orders": self.total_orders,
            "visits": self.visits,
            "avg_order_value": self.avg_order_value,
            "last_order_date": self.last_order_date,
        }


class CustomerRepository(BaseRepository[Customer]):
    """
    Repository para consultas de Customer.

    Uso:
        repo = CustomerRepository(supabase)
        ids = await repo.query_by_predicate("total_spend", "gt", 1000)
    """

    def __init__(
        self,
        db_client: Any,
        page_size: Optional[int] = None,
        in_chunk_size: Optional[int] = None,
    ):
        super().__init__(db_client)
        self.page_size = page_size or settings.CUSTOMER_PAGE_SIZE
        self.in_chunk_size = in_chunk_size or settings.CUSTOMER_IN_CHUNK_SIZE

    @property
    def table_name(self) -> str:
        return "customers"

    async def find_by_id(self, id: str) -> Optional[Customer]:
        """Busca cliente por ID."""
        response = self._execute(
            self.db.table(self.table_name).select("*").eq("id", id),
            "buscar cliente",
            id=id,
        )
        if response.data:
            return Customer.from_dict(response.data[0])
        return None

    async def query_by_predicate(self, field: Any, comparator: Any, value: Any) -> Set[str]:
        """
        Retorna ids dos clientes que satisfazem `field <comparator> value`.

        Pagina por id ate esgotar o resultado.

        Args:
            field: Coluna (RuleField ou str)
            comparator: gt, lt, gte, lte ou eq (Comparator ou str)
            value: Valor numerico ou datetime

        Returns:
            Conjunto de ids

        Raises:
            ValueError: comparador nao suportado
            DatabaseError: falha na consulta
        """
        field_name = getattr(field, "value", field)
        operator = getattr(comparator, "value", comparator)
        if operator not in PREDICATE_OPERATORS:
            raise ValueError(f"Comparador nao suportado: {operator}")

        filter_value = serialize_filter_value(value)
        ids: Set[str] = set()
        start = 0

        while True:
            query = self.db.table(self.table_name).select("id")
            query = getattr(query, operator)(field_name, filter_value)
            query = query.order("id").range(start, start + self.page_size - 1)

            response = self._execute(
                query,
                "consultar clientes por predicado",
                field=field_name,
                comparator=operator,
            )
            rows = response.data or []
            ids.update(str(row["id"]) for row in rows)

            if len(rows) < self.page_size:
                break
            start += self.page_size

        logger.debug(f"Predicado {field_name} {operator} {filter_value}: {len(ids)} clientes")
        return ids

    async def get_attributes(
        self,
        ids: Iterable[str],
        columns: Iterable[str] = STATS_COLUMNS,
    ) -> List[Customer]:
        """
        Busca projecoes de clientes por id.

        Args:
            ids: Ids dos clientes
            columns: Colunas da projecao

        Returns:
            Lista de Customer (so com as colunas pedidas preenchidas)
        """
        select = ",".join(columns)
        customers: List[Customer] = []

        for chunk in chunked(sorted(set(ids)), self.in_chunk_size):
            response = self._execute(
                self.db.table(self.table_name).select(select).in_("id", chunk),
                "buscar projecoes de clientes",
                total=len(chunk),
            )
            customers.extend(Customer.from_dict(row) for row in (response.data or []))

        return customers

    async def find_many(self, ids: Iterable[str]) -> List[Customer]:
        """Busca clientes completos por id (para personalizacao)."""
        return await self.get_attributes(ids, columns=("*",))
