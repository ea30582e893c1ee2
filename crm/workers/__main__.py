"""
Entry point para executar workers.
"""
import asyncio
import sys
import logging

from crm.core.logging import setup_logging

logger = logging.getLogger(__name__)


def main():
    """Executa worker baseado no argumento."""
    setup_logging()

    if len(sys.argv) < 2:
        print("Uso: python -m crm.workers <worker_name> [args]")
        print("Workers disponíveis: dispatch <campaign_id>")
        sys.exit(1)

    worker_name = sys.argv[1]

    if worker_name == "dispatch":
        if len(sys.argv) < 3:
            print("Uso: python -m crm.workers dispatch <campaign_id>")
            sys.exit(1)
        from crm.workers.dispatch import dispatch_campaign
        logger.info(f"Iniciando disparo da campanha {sys.argv[2]}...")
        asyncio.run(dispatch_campaign(sys.argv[2]))
    else:
        logger.error(f"Worker desconhecido: {worker_name}")
        sys.exit(1)


if __name__ == "__main__":
    main()
