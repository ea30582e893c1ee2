"""
Configuração de logging estruturado.

Em produção: JSON para facilitar parsing por ferramentas de log
Em desenvolvimento: Formato legível para humanos
"""
import logging
import sys
import json
from datetime import datetime, timezone

from crm.core.config import settings

# Atributos padrao do LogRecord (o resto veio de extra=...)
_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Formatter que gera logs em formato JSON para produção."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Adicionar exception info se existir
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Campos passados via extra={"campaign_id": ...}
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Formatter colorido para desenvolvimento."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(environment: str = None, log_level: str = None):
    """Configura logging da aplicação baseado no ambiente."""
    environment = (environment or settings.ENVIRONMENT).lower()
    log_level = (log_level or settings.LOG_LEVEL).upper()

    # Remover handlers existentes
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    # Criar handler para stdout
    handler = logging.StreamHandler(sys.stdout)

    if environment == "production":
        # Produção: JSON estruturado
        handler.setFormatter(JSONFormatter())
    else:
        # Desenvolvimento: formato legível colorido
        handler.setFormatter(ColoredFormatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Reduzir verbosidade de libs externas
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
