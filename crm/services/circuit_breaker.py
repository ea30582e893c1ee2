"""
Circuit breaker para o vendor de mensagens.
Previne falhas em cascata e permite recuperação automática.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Any, Optional
from enum import Enum
from dataclasses import dataclass, field

from crm.core.config import settings

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"        # Normal, chamadas passam
    OPEN = "open"            # Bloqueando chamadas
    HALF_OPEN = "half_open"  # Testando recuperação


class CircuitOpenError(Exception):
    """Exceção quando circuit breaker está aberto."""
    pass


@dataclass
class CircuitBreaker:
    """
    Circuit breaker para um serviço específico.

    Estados:
    - CLOSED: Normal, todas as chamadas passam
    - OPEN: Muitas falhas, bloqueia chamadas
    - HALF_OPEN: Testando se serviço recuperou
    """
    name: str
    failures_to_open: int = 5            # Falhas consecutivas para abrir
    timeout_seconds: float = 30.0        # Timeout para chamadas
    reset_seconds: int = 60              # Tempo antes de tentar half-open

    # Estado interno
    state: CircuitState = field(default=CircuitState.CLOSED)
    consecutive_failures: int = field(default=0)
    last_failure: Optional[datetime] = field(default=None)
    last_success: Optional[datetime] = field(default=None)

    def _check_half_open(self):
        """Verifica se deve transicionar para half-open."""
        if self.state != CircuitState.OPEN or self.last_failure is None:
            return

        elapsed = datetime.now() - self.last_failure
        if elapsed.total_seconds() >= self.reset_seconds:
            logger.info(f"Circuit {self.name}: OPEN -> HALF_OPEN")
            self.state = CircuitState.HALF_OPEN

    def _record_success(self):
        """Registra uma chamada bem-sucedida."""
        self.consecutive_failures = 0
        self.last_success = datetime.now()

        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit {self.name}: HALF_OPEN -> CLOSED (recuperado)")
            self.state = CircuitState.CLOSED

    def _record_failure(self, error: Exception):
        """Registra uma falha."""
        self.consecutive_failures += 1
        self.last_failure = datetime.now()

        logger.warning(
            f"Circuit {self.name}: falha {self.consecutive_failures}/{self.failures_to_open} - {error}"
        )

        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit {self.name}: HALF_OPEN -> OPEN (falha na recuperação)")
            self.state = CircuitState.OPEN

        elif self.consecutive_failures >= self.failures_to_open:
            logger.warning(f"Circuit {self.name}: CLOSED -> OPEN (muitas falhas)")
            self.state = CircuitState.OPEN

    async def execute(self, func: Callable, *args, **kwargs) -> Any:
        """
        Executa função com proteção do circuit breaker.

        Args:
            func: Função async a executar
            *args: Argumentos para a função
            **kwargs: Kwargs para a função

        Returns:
            Resultado da função

        Raises:
            CircuitOpenError: Se circuit está aberto
        """
        self._check_half_open()

        if self.state == CircuitState.OPEN:
            raise CircuitOpenError(f"Circuit {self.name} está aberto")

        try:
            result = await asyncio.wait_for(
                func(*args, **kwargs),
                timeout=self.timeout_seconds
            )
        except Exception as e:
            self._record_failure(e)
            raise

        self._record_success()
        return result

    def status(self) -> dict:
        """Retorna status atual do circuit."""
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "last_failure": self.last_failure.isoformat() if self.last_failure else None,
            "last_success": self.last_success.isoformat() if self.last_success else None,
        }

    def reset(self):
        """Reseta o circuit breaker manualmente."""
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        logger.info(f"Circuit {self.name}: reset manual para CLOSED")


# Instância global do vendor de mensagens
circuit_vendor = CircuitBreaker(
    name="vendor",
    failures_to_open=5,
    timeout_seconds=settings.VENDOR_TIMEOUT_SECONDS,
    reset_seconds=15,
)
