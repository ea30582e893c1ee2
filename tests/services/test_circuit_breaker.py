"""
Testes para o circuit breaker do vendor.
"""
import pytest
import asyncio
from datetime import datetime, timedelta

from crm.services.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    CircuitOpenError,
)


class TestCircuitBreaker:
    """Testes para a classe CircuitBreaker."""

    @pytest.mark.asyncio
    async def test_circuit_comeca_fechado(self):
        """Circuit deve começar no estado CLOSED."""
        cb = CircuitBreaker(name="test")
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_chamada_sucesso_mantem_fechado(self):
        """Chamada bem-sucedida mantém circuit fechado."""
        cb = CircuitBreaker(name="test")

        async def funcao_sucesso():
            return "ok"

        assert await cb.execute(funcao_sucesso) == "ok"
        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_circuit_abre_apos_falhas(self):
        """Circuit deve abrir após número configurado de falhas."""
        cb = CircuitBreaker(name="test", failures_to_open=3)

        async def funcao_falha():
            raise Exception("Erro simulado")

        for _ in range(3):
            with pytest.raises(Exception):
                await cb.execute(funcao_falha)

        assert cb.state == CircuitState.OPEN
        assert cb.consecutive_failures == 3

    @pytest.mark.asyncio
    async def test_circuit_aberto_bloqueia_chamadas(self):
        """Circuit aberto deve levantar CircuitOpenError sem chamar a função."""
        cb = CircuitBreaker(name="test", failures_to_open=1)
        chamadas = []

        async def funcao():
            chamadas.append(1)
            raise Exception("Erro")

        with pytest.raises(Exception):
            await cb.execute(funcao)

        with pytest.raises(CircuitOpenError):
            await cb.execute(funcao)

        assert len(chamadas) == 1

    @pytest.mark.asyncio
    async def test_half_open_recupera(self):
        """Depois do reset_seconds, uma chamada de sucesso fecha o circuit."""
        cb = CircuitBreaker(name="test", failures_to_open=1, reset_seconds=10)

        async def falha():
            raise Exception("Erro")

        async def sucesso():
            return "ok"

        with pytest.raises(Exception):
            await cb.execute(falha)

        cb.last_failure = datetime.now() - timedelta(seconds=11)

        assert await cb.execute(sucesso) == "ok"
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_falha_reabre(self):
        cb = CircuitBreaker(name="test", failures_to_open=1, reset_seconds=10)

        async def falha():
            raise Exception("Erro")

        with pytest.raises(Exception):
            await cb.execute(falha)
        cb.last_failure = datetime.now() - timedelta(seconds=11)

        with pytest.raises(Exception):
            await cb.execute(falha)

        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_timeout_conta_como_falha(self):
        cb = CircuitBreaker(name="test", timeout_seconds=0.01)

        async def lenta():
            await asyncio.sleep(1)

        with pytest.raises(asyncio.TimeoutError):
            await cb.execute(lenta)

        assert cb.consecutive_failures == 1

    def test_status_e_reset(self):
        cb = CircuitBreaker(name="vendor", state=CircuitState.OPEN, consecutive_failures=5)

        assert cb.status()["state"] == "open"

        cb.reset()

        assert cb.state == CircuitState.CLOSED
        assert cb.status()["consecutive_failures"] == 0
