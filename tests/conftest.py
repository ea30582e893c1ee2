"""
Configuração global de testes - Fixtures compartilhadas.

Este arquivo contém fixtures reutilizáveis em todos os testes do projeto.
Evita duplicação de código de mock em módulos individuais.

Dois estilos de mock de banco:
- criar_mock_supabase: MagicMock com chain configurado (verifica a query montada)
- FakeSupabase: banco em memória que executa filtros, ordenação, paginação e
  as RPCs increment_campaign_stats, mark_message_sent, mark_message_failed e
  apply_delivery_receipts (fluxos completos)
"""

import copy
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from crm.core.distributed_lock import DistributedLock
from crm.core.tasks import reset_task_failure_counts


# =============================================================================
# MOCK FACTORIES - Funções para criar mocks configuráveis
# =============================================================================


def criar_mock_supabase(dados_retorno: list[dict[str, Any]] | None = None) -> MagicMock:
    """
    Cria mock do cliente Supabase com chain de métodos configurado.

    Args:
        dados_retorno: Lista de dicts que será retornada em .execute().data

    Returns:
        MagicMock configurado para suportar chain: .table().select().eq().execute()
    """
    mock = MagicMock()
    for method in (
        "table", "select", "insert", "update", "upsert", "delete", "eq", "neq",
        "gt", "gte", "lt", "lte", "in_", "order", "limit", "range", "rpc",
    ):
        getattr(mock, method).return_value = mock

    response = MagicMock()
    response.data = dados_retorno if dados_retorno is not None else []
    response.count = len(response.data) if response.data else 0
    mock.execute.return_value = response

    return mock


def criar_mock_redis() -> MagicMock:
    """Cria mock do cliente Redis com métodos async."""
    mock = MagicMock()
    mock.get = AsyncMock(return_value=None)
    mock.set = AsyncMock(return_value=True)
    mock.delete = AsyncMock(return_value=1)
    mock.eval = AsyncMock(return_value=1)
    mock.ping = AsyncMock(return_value=True)
    return mock


# =============================================================================
# FAKES - Banco e Redis em memória
# =============================================================================


class FakeResponse:
    def __init__(self, data):
        self.data = data
        self.count = len(data)


def _comparable(value):
    """Normaliza valores para comparação (timestamps ISO viram datetime)."""
    if isinstance(value, str):
        texto = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(texto)
        except ValueError:
            return value
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return value


class FakeQuery:
    """Query builder do FakeSupabase (subconjunto do postgrest usado pelo projeto)."""

    _OPERATORS = {
        "eq": lambda a, b: a == b,
        "gt": lambda a, b: a > b,
        "gte": lambda a, b: a >= b,
        "lt": lambda a, b: a < b,
        "lte": lambda a, b: a <= b,
    }

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self._op = "select"
        self._columns = "*"
        self._payload = None
        self._filters = []
        self._order = []
        self._range = None
        self._limit = None

    def select(self, columns="*", **kwargs):
        self._op = "select"
        self._columns = columns
        return self

    def insert(self, payload):
        self._op = "insert"
        self._payload = payload
        return self

    def update(self, payload):
        self._op = "update"
        self._payload = payload
        return self

    def delete(self):
        self._op = "delete"
        return self

    def _add_filter(self, op, field, value):
        self._filters.append((op, field, value))
        return self

    def eq(self, field, value):
        return self._add_filter("eq", field, value)

    def gt(self, field, value):
        return self._add_filter("gt", field, value)

    def gte(self, field, value):
        return self._add_filter("gte", field, value)

    def lt(self, field, value):
        return self._add_filter("lt", field, value)

    def lte(self, field, value):
        return self._add_filter("lte", field, value)

    def in_(self, field, values):
        return self._add_filter("in", field, list(values))

    def order(self, field, desc=False):
        self._order.append((field, desc))
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _value(self, row, field):
        computed = self.db.computed.get(self.table_name, {})
        if field in computed:
            return computed[field](row)
        return row.get(field)

    def _matches(self, row) -> bool:
        for op, field, expected in self._filters:
            actual = self._value(row, field)
            if op == "in":
                if actual not in expected:
                    return False
                continue
            if actual is None:
                return False
            if not self._OPERATORS[op](_comparable(actual), _comparable(expected)):
                return False
        return True

    def _project(self, row) -> dict:
        full = dict(row)
        for field, fn in self.db.computed.get(self.table_name, {}).items():
            full[field] = fn(row)
        if self._columns in ("*", None):
            return copy.deepcopy(full)
        wanted = [c.strip() for c in self._columns.split(",")]
        if "*" in wanted:
            return copy.deepcopy(full)
        return {c: copy.deepcopy(full.get(c)) for c in wanted}

    def execute(self) -> FakeResponse:
        self.db.check_failure(self.table_name)
        rows = self.db.tables.setdefault(self.table_name, [])

        if self._op == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for item in payload:
                row = copy.deepcopy(item)
                row.setdefault("id", str(uuid.uuid4()))
                row.setdefault("created_at", self.db.next_timestamp())
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return FakeResponse(inserted)

        matched = [row for row in rows if self._matches(row)]

        if self._op == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return FakeResponse([copy.deepcopy(row) for row in matched])

        if self._op == "delete":
            self.db.tables[self.table_name] = [row for row in rows if row not in matched]
            return FakeResponse([copy.deepcopy(row) for row in matched])

        for field, desc in reversed(self._order):
            matched.sort(key=lambda r: (self._value(r, field) is None, self._value(r, field) or 0), reverse=desc)
        if self._range is not None:
            start, end = self._range
            matched = matched[start:end + 1]
        if self._limit is not None:
            matched = matched[:self._limit]
        return FakeResponse([self._project(row) for row in matched])


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: dict):
        self.db = db
        self.name = name
        self.params = params

    def execute(self) -> FakeResponse:
        self.db.rpc_calls.append((self.name, copy.deepcopy(self.params)))
        self.db.check_failure(f"rpc:{self.name}")
        handler = getattr(self.db, f"_rpc_{self.name}")
        response = FakeResponse(handler(self.params))
        for hook in self.db.after_rpc:
            hook(self.name)
        return response


class FakeSupabase:
    """Banco em memória com a mesma interface de chain do cliente Supabase."""

    MESSAGE_TRANSITIONS = {
        "PENDING": {"SENT", "FAILED", "DELIVERED"},
        "SENT": {"DELIVERED", "FAILED"},
    }

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.rpc_calls: list[tuple] = []
        # Chamados com o nome da RPC depois de cada execucao
        self.after_rpc: list = []
        self._failures: dict[str, int] = {}
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.computed = {
            "customers": {
                "avg_order_value": lambda r: (
                    float(r.get("total_spend") or 0) / r["total_orders"]
                    if r.get("total_orders") else 0.0
                ),
            },
        }

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict) -> FakeRpc:
        return FakeRpc(self, name, params)

    def next_timestamp(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def fail(self, target: str, times: int = 1):
        """Faz as próximas `times` operações em `target` (tabela ou 'rpc:nome') falharem."""
        self._failures[target] = self._failures.get(target, 0) + times

    def check_failure(self, target: str):
        remaining = self._failures.get(target, 0)
        if remaining > 0:
            self._failures[target] = remaining - 1
            raise Exception(f"Database error ({target})")

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    def seed(self, table: str, rows: list[dict]):
        for row in rows:
            item = dict(row)
            item.setdefault("id", str(uuid.uuid4()))
            item.setdefault("created_at", self.next_timestamp())
            self.rows(table).append(item)

    def rpc_count(self, name: str) -> int:
        return sum(1 for call_name, _ in self.rpc_calls if call_name == name)

    def _rpc_increment_campaign_stats(self, params: dict) -> list:
        for row in self.rows("campaigns"):
            if row["id"] == params["p_campaign_id"]:
                row["stats_sent"] = (row.get("stats_sent") or 0) + params.get("p_sent", 0)
                row["stats_failed"] = (row.get("stats_failed") or 0) + params.get("p_failed", 0)
                return [{
                    "stats_total": row.get("stats_total", 0),
                    "stats_sent": row["stats_sent"],
                    "stats_failed": row["stats_failed"],
                }]
        return []

    def _settle_pending(self, message_id: str, changes: dict, counter: str) -> list:
        """Mensagem PENDING -> status final e contador da campanha, juntos."""
        for row in self.rows("communication_logs"):
            if row["message_id"] != message_id:
                continue
            if row["status"] != "PENDING":
                return []
            row.update(copy.deepcopy(changes))
            stats = {"stats_total": 0, "stats_sent": 0, "stats_failed": 0}
            for campaign in self.rows("campaigns"):
                if campaign["id"] == row["campaign_id"]:
                    campaign[counter] = (campaign.get(counter) or 0) + 1
                    stats = {key: campaign.get(key) or 0 for key in stats}
            return [{"message_id": message_id, "campaign_id": row["campaign_id"], **stats}]
        return []

    def _rpc_mark_message_sent(self, params: dict) -> list:
        return self._settle_pending(
            params["p_message_id"],
            {
                "status": "SENT",
                "vendor_response": params["p_vendor_response"],
                "sent_at": params["p_sent_at"],
                "delivery_attempts": params.get("p_attempts", 1),
            },
            "stats_sent",
        )

    def _rpc_mark_message_failed(self, params: dict) -> list:
        return self._settle_pending(
            params["p_message_id"],
            {
                "status": "FAILED",
                "vendor_response": params["p_vendor_response"],
                "delivery_attempts": params.get("p_attempts", 1),
            },
            "stats_failed",
        )

    def _rpc_apply_delivery_receipts(self, params: dict) -> list:
        by_message_id = {row["message_id"]: row for row in self.rows("communication_logs")}
        result = []
        for receipt in params["p_receipts"]:
            row = by_message_id.get(receipt["message_id"])
            if row is None:
                continue
            previous = row["status"]
            new = receipt["status"]
            applied = new in self.MESSAGE_TRANSITIONS.get(previous, set())
            if applied:
                row["status"] = new
                if new == "DELIVERED":
                    row["delivered_at"] = receipt.get("timestamp")
                response = dict(row.get("vendor_response") or {})
                response["delivery_status"] = new
                response["receipt_metadata"] = receipt.get("metadata") or {}
                row["vendor_response"] = response
            result.append({
                "message_id": row["message_id"],
                "campaign_id": row["campaign_id"],
                "previous_status": previous,
                "status": new,
                "applied": applied,
            })
        return result


class FakeRedis:
    """Redis em memória com o suficiente para o DistributedLock."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def get(self, key):
        return self.store.get(key)

    async def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0

    async def eval(self, script, numkeys, key, token):
        if self.store.get(key) == token:
            del self.store[key]
            return 1
        return 0

    async def ping(self):
        return True


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_task_failures():
    reset_task_failure_counts()
    yield
    reset_task_failure_counts()


@pytest.fixture
def mock_supabase_factory():
    """
    Factory para criar mocks de Supabase com dados específicos.

    Uso:
        def test_algo(mock_supabase_factory):
            mock = mock_supabase_factory([{"id": "123"}])
    """
    return criar_mock_supabase


@pytest.fixture
def fake_db():
    """Banco em memória vazio."""
    return FakeSupabase()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def lock_factory(fake_redis):
    """Fábrica de DistributedLock ligada ao Redis em memória."""

    def _factory(key: str) -> DistributedLock:
        return DistributedLock(key, timeout=60, client=fake_redis)

    return _factory


def days_ago(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


@pytest.fixture
def sample_customers():
    """Clientes com perfis variados para segmentação."""
    return [
        {"id": "c1", "name": "Ana", "email": "ana@example.com", "total_spend": 1500,
         "total_orders": 10, "visits": 6, "last_order_date": days_ago(10)},
        {"id": "c2", "name": "Bruno", "email": "bruno@example.com", "total_spend": 500,
         "total_orders": 5, "visits": 10, "last_order_date": days_ago(20)},
        {"id": "c3", "name": "Carla", "email": "carla@example.com", "total_spend": 0,
         "total_orders": 0, "visits": 1, "last_order_date": None},
        {"id": "c4", "name": "Diego", "email": "diego@example.com", "total_spend": 2500,
         "total_orders": 2, "visits": 3, "last_order_date": days_ago(200)},
        {"id": "c5", "name": "Eva", "email": "eva@example.com", "total_spend": 3000,
         "total_orders": 30, "visits": 12, "last_order_date": days_ago(5)},
    ]


@pytest.fixture
def seeded_db(fake_db, sample_customers):
    """Banco em memória com os clientes de exemplo."""
    fake_db.seed("customers", sample_customers)
    return fake_db
