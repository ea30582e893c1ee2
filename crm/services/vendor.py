"""
Vendor de mensagens.

Interface comum + duas implementacoes:
- HttpVendorProvider: vendor real via HTTP, protegido pelo circuit breaker
- SimulatedVendorProvider: vendor de desenvolvimento (latencia, taxa de
  sucesso e recibos assincronos simulados)

O vendor recebe o nosso message_id como id de correlacao; os recibos de
entrega voltam com ele.
"""
import asyncio
import inspect
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Set, Tuple

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from crm.core.config import settings
from crm.core.exceptions import ConfigurationError, VendorError
from crm.core.tasks import safe_create_task
from crm.core.timezone import iso_utc, parse_timestamp, utc_now
from crm.services.circuit_breaker import CircuitBreaker, CircuitOpenError, circuit_vendor

logger = logging.getLogger(__name__)

ReceiptCallback = Callable[[dict], Any]


@dataclass
class VendorSendResult:
    """Aceite do vendor para uma mensagem."""

    message_id: str
    status: str
    timestamp: datetime
    raw: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "raw": self.raw,
        }


class VendorProvider(ABC):
    """Contrato do vendor de mensagens."""

    @abstractmethod
    async def send(self, body: str, customer_id: str, message_id: str) -> VendorSendResult:
        """
        Envia uma mensagem.

        Raises:
            VendorError: mensagem rejeitada (ou vendor indisponivel)
        """

    async def drain(self) -> None:
        """Aguarda trabalho pendente do vendor (ex: recibos agendados)."""

    async def aclose(self) -> None:
        """Libera recursos do vendor."""


class HttpVendorProvider(VendorProvider):
    """Vendor real: POST {base_url}/messages."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        callback_url: Optional[str] = None,
        timeout: Optional[float] = None,
        circuit: Optional[CircuitBreaker] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.VENDOR_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.VENDOR_API_KEY
        self.callback_url = callback_url if callback_url is not None else settings.VENDOR_CALLBACK_URL
        self.timeout = timeout or settings.VENDOR_TIMEOUT_SECONDS
        self.circuit = circuit or circuit_vendor
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"User-Agent": f"{settings.APP_NAME}/1.0"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                headers=headers,
            )
            logger.info("Cliente HTTP do vendor criado")
        return self._client

    # Falhas de transporte sao repetidas; respostas HTTP de erro nao
    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post_message(self, payload: dict) -> httpx.Response:
        response = await self._get_client().post(f"{self.base_url}/messages", json=payload)
        response.raise_for_status()
        return response

    async def send(self, body: str, customer_id: str, message_id: str) -> VendorSendResult:
        payload = {
            "messageId": message_id,
            "customerId": customer_id,
            "message": body,
        }
        if self.callback_url:
            payload["callbackUrl"] = self.callback_url

        try:
            response = await self.circuit.execute(self._post_message, payload)
        except CircuitOpenError as e:
            raise VendorError(
                "Vendor indisponivel (circuit aberto)",
                details={"message_id": message_id},
                original_error=e,
            ) from e
        except httpx.HTTPStatusError as e:
            raise VendorError(
                f"Vendor rejeitou mensagem: HTTP {e.response.status_code}",
                details={"message_id": message_id, "status_code": e.response.status_code},
                original_error=e,
            ) from e
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            raise VendorError(
                f"Erro de comunicacao com vendor: {type(e).__name__}",
                details={"message_id": message_id},
                original_error=e,
            ) from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"body": data}

        try:
            timestamp = parse_timestamp(data.get("timestamp")) or utc_now()
        except ValueError:
            timestamp = utc_now()

        return VendorSendResult(
            message_id=str(data.get("messageId") or message_id),
            status=str(data.get("status") or "ACCEPTED"),
            timestamp=timestamp,
            raw=data,
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.info("Cliente HTTP do vendor fechado")


class SimulatedVendorProvider(VendorProvider):
    """
    Vendor de desenvolvimento.

    Simula latencia de 100-500ms, taxa de sucesso configuravel e, para
    mensagens aceitas, agenda recibos SENT e DELIVERED 1-3s depois via
    receipt_callback (normalmente ReceiptReconciler.submit).
    """

    def __init__(
        self,
        success_rate: Optional[float] = None,
        receipt_callback: Optional[ReceiptCallback] = None,
        latency: Tuple[float, float] = (0.1, 0.5),
        receipt_delay: Tuple[float, float] = (1.0, 3.0),
        rng: Optional[random.Random] = None,
    ):
        if success_rate is None:
            success_rate = settings.SIMULATED_VENDOR_SUCCESS_RATE
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate deve estar entre 0 e 1")

        self.success_rate = success_rate
        self.receipt_callback = receipt_callback
        self.latency = latency
        self.receipt_delay = receipt_delay
        self.rng = rng or random.Random()
        self._receipt_tasks: Set[asyncio.Task] = set()

    async def send(self, body: str, customer_id: str, message_id: str) -> VendorSendResult:
        await asyncio.sleep(self.rng.uniform(*self.latency))

        if self.rng.random() >= self.success_rate:
            raise VendorError(
                "Message delivery failed",
                details={"message_id": message_id, "customer_id": customer_id},
            )

        if self.receipt_callback is not None:
            self._schedule_receipts(message_id, customer_id)

        return VendorSendResult(
            message_id=message_id,
            status="ACCEPTED",
            timestamp=utc_now(),
            raw={"vendor": "simulated-vendor", "customerId": customer_id},
        )

    def _schedule_receipts(self, message_id: str, customer_id: str) -> None:
        task = safe_create_task(
            self._emit_receipts(message_id, customer_id),
            name="simulated_vendor_receipt",
        )
        self._receipt_tasks.add(task)
        task.add_done_callback(self._receipt_tasks.discard)

    async def _emit_receipts(self, message_id: str, customer_id: str) -> None:
        delay = self.rng.uniform(*self.receipt_delay)
        await asyncio.sleep(delay / 2)
        await self._deliver(message_id, customer_id, "SENT")
        await asyncio.sleep(delay / 2)
        await self._deliver(message_id, customer_id, "DELIVERED")

    async def _deliver(self, message_id: str, customer_id: str, status: str) -> None:
        payload = {
            "messageId": message_id,
            "status": status,
            "timestamp": iso_utc(),
            "customerId": customer_id,
            "metadata": {"deliveryAttempt": 1, "vendor": "simulated-vendor"},
        }
        result = self.receipt_callback(payload)
        if inspect.isawaitable(result):
            await result

    async def drain(self) -> None:
        """Aguarda a emissao dos recibos agendados."""
        tasks = list(self._receipt_tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def pending_receipts(self) -> int:
        return len(self._receipt_tasks)

    async def aclose(self) -> None:
        """Cancela recibos ainda nao emitidos."""
        tasks = list(self._receipt_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._receipt_tasks.clear()


def create_vendor(receipt_callback: Optional[ReceiptCallback] = None) -> VendorProvider:
    """
    Cria o vendor configurado em VENDOR_MODE.

    Raises:
        ConfigurationError: modo desconhecido
    """
    mode = settings.VENDOR_MODE.lower()
    if mode == "http":
        return HttpVendorProvider()
    if mode == "simulated":
        return SimulatedVendorProvider(receipt_callback=receipt_callback)
    raise ConfigurationError(f"VENDOR_MODE desconhecido: {settings.VENDOR_MODE}")
