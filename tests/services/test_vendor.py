"""
Testes para os vendors de mensagens.
"""
import json
import random

import httpx
import pytest
from unittest.mock import MagicMock, patch
from tenacity import wait_none

from crm.core.exceptions import ConfigurationError, VendorError
from crm.services.circuit_breaker import CircuitBreaker, CircuitState
from crm.services.vendor import (
    HttpVendorProvider,
    SimulatedVendorProvider,
    create_vendor,
)


def criar_vendor_http(handler, circuit=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpVendorProvider(
        base_url="https://vendor.test",
        api_key="secret",
        callback_url="https://crm.test/receipts",
        circuit=circuit or CircuitBreaker(name="vendor-test", timeout_seconds=5),
        client=client,
    )


class TestHttpVendorProvider:

    @pytest.mark.asyncio
    async def test_envio_aceito(self):
        recebidos = []

        def handler(request: httpx.Request) -> httpx.Response:
            recebidos.append(json.loads(request.content))
            return httpx.Response(
                202,
                json={"messageId": "msg-1", "status": "ACCEPTED", "timestamp": "2024-01-01T00:00:00Z"},
            )

        vendor = criar_vendor_http(handler)
        result = await vendor.send("Oi Ana", "c1", "msg-1")

        assert result.message_id == "msg-1"
        assert result.status == "ACCEPTED"
        assert result.timestamp.year == 2024
        assert recebidos[0] == {
            "messageId": "msg-1",
            "customerId": "c1",
            "message": "Oi Ana",
            "callbackUrl": "https://crm.test/receipts",
        }

    @pytest.mark.asyncio
    async def test_post_no_endpoint_messages(self):
        urls = []

        def handler(request):
            urls.append(str(request.url))
            return httpx.Response(200, json={})

        vendor = criar_vendor_http(handler)
        result = await vendor.send("x", "c1", "msg-9")

        assert urls == ["https://vendor.test/messages"]
        # Sem messageId na resposta: usa o nosso
        assert result.message_id == "msg-9"

    @pytest.mark.asyncio
    async def test_rejeicao_http_vira_vendor_error(self):
        vendor = criar_vendor_http(lambda request: httpx.Response(422, json={"error": "invalid"}))

        with pytest.raises(VendorError) as exc_info:
            await vendor.send("x", "c1", "msg-1")

        assert exc_info.value.details["status_code"] == 422

    @pytest.mark.asyncio
    async def test_erro_de_conexao_repete_e_vira_vendor_error(self):
        tentativas = []

        def handler(request):
            tentativas.append(request)
            raise httpx.ConnectError("sem rede", request=request)

        vendor = criar_vendor_http(handler)

        with patch.object(HttpVendorProvider._post_message.retry, "wait", wait_none()):
            with pytest.raises(VendorError):
                await vendor.send("x", "c1", "msg-1")

        assert len(tentativas) == 2

    @pytest.mark.asyncio
    async def test_falha_transitoria_recupera_na_segunda_tentativa(self):
        tentativas = []

        def handler(request):
            tentativas.append(request)
            if len(tentativas) == 1:
                raise httpx.ReadTimeout("lento", request=request)
            return httpx.Response(202, json={"status": "ACCEPTED"})

        vendor = criar_vendor_http(handler)

        with patch.object(HttpVendorProvider._post_message.retry, "wait", wait_none()):
            result = await vendor.send("x", "c1", "msg-1")

        assert result.status == "ACCEPTED"
        assert len(tentativas) == 2

    @pytest.mark.asyncio
    async def test_erro_http_nao_e_repetido(self):
        tentativas = []

        def handler(request):
            tentativas.append(request)
            return httpx.Response(503)

        vendor = criar_vendor_http(handler)

        with pytest.raises(VendorError):
            await vendor.send("x", "c1", "msg-1")

        assert len(tentativas) == 1

    @pytest.mark.asyncio
    async def test_circuit_aberto_vira_vendor_error(self):
        circuit = CircuitBreaker(name="vendor-test", failures_to_open=1)
        vendor = criar_vendor_http(lambda request: httpx.Response(500), circuit=circuit)

        with pytest.raises(VendorError):
            await vendor.send("x", "c1", "msg-1")
        assert circuit.state == CircuitState.OPEN

        with pytest.raises(VendorError) as exc_info:
            await vendor.send("x", "c1", "msg-2")
        assert "circuit" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_aclose_nao_fecha_cliente_injetado(self):
        vendor = criar_vendor_http(lambda request: httpx.Response(200, json={}))
        client = vendor._client

        await vendor.aclose()

        assert not client.is_closed
        await client.aclose()


class TestSimulatedVendorProvider:

    @pytest.mark.asyncio
    async def test_sucesso_agenda_recibos(self):
        recibos = []
        vendor = SimulatedVendorProvider(
            success_rate=1.0,
            receipt_callback=recibos.append,
            latency=(0, 0),
            receipt_delay=(0, 0),
            rng=random.Random(1),
        )

        result = await vendor.send("Oi", "c1", "msg-1")
        await vendor.drain()

        assert result.status == "ACCEPTED"
        assert result.message_id == "msg-1"
        assert [r["status"] for r in recibos] == ["SENT", "DELIVERED"]
        assert all(r["messageId"] == "msg-1" for r in recibos)
        assert vendor.pending_receipts == 0

    @pytest.mark.asyncio
    async def test_falha_levanta_vendor_error(self):
        recibos = []
        vendor = SimulatedVendorProvider(
            success_rate=0.0,
            receipt_callback=recibos.append,
            latency=(0, 0),
        )

        with pytest.raises(VendorError):
            await vendor.send("Oi", "c1", "msg-1")

        assert recibos == []

    @pytest.mark.asyncio
    async def test_callback_async(self):
        recebidos = []

        async def callback(payload):
            recebidos.append(payload["status"])

        vendor = SimulatedVendorProvider(
            success_rate=1.0, receipt_callback=callback, latency=(0, 0), receipt_delay=(0, 0)
        )
        await vendor.send("Oi", "c1", "msg-1")
        await vendor.drain()

        assert recebidos == ["SENT", "DELIVERED"]

    @pytest.mark.asyncio
    async def test_aclose_cancela_recibos_pendentes(self):
        recibos = []
        vendor = SimulatedVendorProvider(
            success_rate=1.0, receipt_callback=recibos.append, latency=(0, 0), receipt_delay=(60, 60)
        )
        await vendor.send("Oi", "c1", "msg-1")
        assert vendor.pending_receipts == 1

        await vendor.aclose()

        assert vendor.pending_receipts == 0
        assert recibos == []

    def test_taxa_de_sucesso_invalida(self):
        with pytest.raises(ValueError):
            SimulatedVendorProvider(success_rate=1.5)

    @pytest.mark.asyncio
    async def test_taxa_de_sucesso_aproximada(self):
        vendor = SimulatedVendorProvider(success_rate=0.9, latency=(0, 0), rng=random.Random(42))
        sucessos = 0
        for i in range(200):
            try:
                await vendor.send("x", "c", f"m{i}")
                sucessos += 1
            except VendorError:
                pass

        assert 160 <= sucessos <= 196


class TestCreateVendor:

    def test_modo_simulado(self):
        with patch("crm.services.vendor.settings") as mock_settings:
            mock_settings.VENDOR_MODE = "simulated"
            mock_settings.SIMULATED_VENDOR_SUCCESS_RATE = 0.9
            vendor = create_vendor(receipt_callback=MagicMock())

        assert isinstance(vendor, SimulatedVendorProvider)

    def test_modo_http(self):
        with patch("crm.services.vendor.settings") as mock_settings:
            mock_settings.VENDOR_MODE = "HTTP"
            mock_settings.VENDOR_API_URL = "https://vendor.test"
            mock_settings.VENDOR_API_KEY = ""
            mock_settings.VENDOR_CALLBACK_URL = ""
            mock_settings.VENDOR_TIMEOUT_SECONDS = 5.0
            vendor = create_vendor()

        assert isinstance(vendor, HttpVendorProvider)

    def test_modo_desconhecido(self):
        with patch("crm.services.vendor.settings") as mock_settings:
            mock_settings.VENDOR_MODE = "carrier-pigeon"
            with pytest.raises(ConfigurationError):
                create_vendor()
