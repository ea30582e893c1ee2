"""
Distributed Lock - Lock distribuído via Redis.

Impede que dois processos/workers iniciem o disparo da mesma campanha
ao mesmo tempo (janela entre carregar a campanha e a transicao para
RUNNING).

Uso:
    async with DistributedLock("campaign_dispatch:123"):
        # Código protegido pelo lock
        await operacao_critica()
"""
import asyncio
import uuid
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Lua script: só deleta se o valor ainda for nosso token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquiredError(Exception):
    """Raised when lock cannot be acquired."""
    pass


class LockBackendError(LockNotAcquiredError):
    """Lock nao adquirido porque o Redis falhou (nao porque outro dono o tem)."""
    pass


class DistributedLock:
    """
    Lock distribuído usando Redis.

    Implementa o padrão Redlock simplificado:
    - SET NX (set if not exists) para adquirir
    - Lua script para liberar de forma segura

    Attributes:
        key: Nome do recurso sendo bloqueado
        timeout: TTL do lock em segundos (previne locks órfãos)
        token: Token único para identificar este lock holder
    """

    def __init__(
        self,
        key: str,
        timeout: int = 300,
        blocking: bool = False,
        blocking_timeout: int = 30,
        client: Optional[Any] = None,
    ):
        """
        Args:
            key: Nome do recurso a bloquear
            timeout: TTL do lock em segundos (default 5 min)
            blocking: Se True, espera até conseguir o lock
            blocking_timeout: Tempo máximo de espera se blocking=True
            client: Cliente Redis (default: cliente global)
        """
        self.key = f"lock:{key}"
        self.timeout = timeout
        self.blocking = blocking
        self.blocking_timeout = blocking_timeout
        self.token = str(uuid.uuid4())
        self._client = client
        self._acquired = False
        self.backend_error: Optional[Exception] = None

    @property
    def client(self):
        if self._client is None:
            from crm.services.redis import redis_client

            self._client = redis_client
        return self._client

    @property
    def acquired(self) -> bool:
        return self._acquired

    async def acquire(self) -> bool:
        """
        Tenta adquirir o lock.

        Returns:
            True se adquiriu, False se não conseguiu
        """
        if not self.blocking:
            return await self._try_acquire()

        # Tentar repetidamente até timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.blocking_timeout
        while loop.time() < deadline:
            if await self._try_acquire():
                return True
            await asyncio.sleep(0.1)  # 100ms entre tentativas
        return False

    async def _try_acquire(self) -> bool:
        """Tenta adquirir o lock uma vez."""
        self.backend_error = None
        try:
            result = await self.client.set(
                self.key,
                self.token,
                nx=True,  # SET if Not eXists
                ex=self.timeout
            )
            self._acquired = bool(result)
            if self._acquired:
                logger.debug(f"[DistributedLock] Lock adquirido: {self.key}")
            return self._acquired
        except Exception as e:
            self.backend_error = e
            logger.error(f"[DistributedLock] Erro ao adquirir lock: {e}")
            return False

    async def release(self) -> bool:
        """
        Libera o lock de forma segura.

        Returns:
            True se liberou, False se já tinha expirado ou não era dono
        """
        if not self._acquired:
            return True

        try:
            result = await self.client.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
            released = result == 1
            if released:
                logger.debug(f"[DistributedLock] Lock liberado: {self.key}")
            else:
                logger.warning(f"[DistributedLock] Lock expirou antes de liberar: {self.key}")
            return released
        except Exception as e:
            logger.error(f"[DistributedLock] Erro ao liberar lock: {e}")
            return False
        finally:
            self._acquired = False

    async def __aenter__(self):
        """Context manager: adquire lock."""
        acquired = await self.acquire()
        if not acquired:
            if self.backend_error is not None:
                raise LockBackendError(
                    f"Redis indisponivel para o lock: {self.key}"
                ) from self.backend_error
            raise LockNotAcquiredError(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager: libera lock."""
        await self.release()
        return False  # Não suprime exceções
