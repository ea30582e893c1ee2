"""
Background tasks do motor de campanhas.

O loop de envio de cada campanha e os flushes do reconciliador rodam
como tasks soltas. safe_create_task garante que uma falha nelas seja
logada (com o contexto da campanha), contada por nome de task e
entregue ao dono via on_error, em vez de sumir no event loop.
"""
import asyncio
import logging
from typing import Any, Callable, Coroutine, Dict, Optional

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Exception], None]

# Falhas por nome de task (ex: campaign_dispatch, receipt_flush)
_task_failures: dict[str, int] = {}


async def _safe_wrapper(
    coro: Coroutine,
    task_name: str,
    on_error: Optional[ErrorCallback] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Any:
    """
    Executa a coroutine sem deixar a excecao escapar da task.

    Args:
        coro: Coroutine a executar
        task_name: Nome para logging e contagem de falhas
        on_error: Chamado com a excecao (ex: dispatcher registra o erro da campanha)
        context: Campos extras do log (ex: {"campaign_id": ...})
    """
    context = context or {}
    try:
        return await coro
    except asyncio.CancelledError:
        logger.debug(f"Task cancelada: {task_name}", extra=context)
        raise
    except Exception as e:
        _task_failures[task_name] = _task_failures.get(task_name, 0) + 1

        logger.error(
            f"Erro em background task '{task_name}': {e}",
            exc_info=True,
            extra={
                **context,
                "task_name": task_name,
                "error_type": type(e).__name__,
                "total_failures": _task_failures[task_name],
            },
        )

        if on_error:
            try:
                on_error(e)
            except Exception as callback_error:
                logger.error(
                    f"Erro no callback on_error de '{task_name}': {callback_error}",
                    extra=context,
                )

        return None


def safe_create_task(
    coro: Coroutine,
    name: Optional[str] = None,
    on_error: Optional[ErrorCallback] = None,
    context: Optional[Dict[str, Any]] = None,
) -> asyncio.Task:
    """
    Cria task com tratamento de erro.

    Uso:
        safe_create_task(
            self._run(campaign_id, pending),
            name="campaign_dispatch",
            on_error=lambda e: self._record_error(campaign_id, e),
            context={"campaign_id": campaign_id},
        )

    Returns:
        asyncio.Task que nunca termina com excecao (exceto cancelamento)
    """
    task_name = name or getattr(coro, "__qualname__", "unknown")
    wrapped = _safe_wrapper(coro, task_name, on_error, context)
    return asyncio.create_task(wrapped, name=task_name)


def get_task_failure_counts() -> dict[str, int]:
    """Falhas por nome de task desde o ultimo reset."""
    return _task_failures.copy()


def reset_task_failure_counts():
    """Zera os contadores (usado entre testes)."""
    _task_failures.clear()
