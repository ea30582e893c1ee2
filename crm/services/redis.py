"""
Cliente Redis para o lock distribuído de disparo.
"""
import redis.asyncio as redis
import logging
from crm.core.config import settings

logger = logging.getLogger(__name__)

# Cliente Redis global (from_url nao abre conexao ate o primeiro comando)
redis_client = redis.from_url(
    settings.REDIS_URL,
    encoding="utf-8",
    decode_responses=True
)
