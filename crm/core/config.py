"""
Configurações da aplicação.
Carrega variáveis de ambiente.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Configurações carregadas do .env"""

    # App
    APP_NAME: str = "Marketing CRM"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""

    # Redis (lock de disparo de campanhas)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Vendor de mensagens
    # VENDOR_MODE: "http" (vendor real) | "simulated" (vendor de desenvolvimento)
    VENDOR_MODE: str = "simulated"
    VENDOR_API_URL: str = "http://localhost:4001"
    VENDOR_API_KEY: str = ""
    VENDOR_TIMEOUT_SECONDS: float = 10.0
    VENDOR_CALLBACK_URL: str = "http://localhost:4000/api/delivery-receipt"
    SIMULATED_VENDOR_SUCCESS_RATE: float = 0.9

    # Disparo de campanhas
    DISPATCH_BATCH_SIZE: int = 50
    DISPATCH_BATCH_DELAY_SECONDS: float = 1.0  # Backpressure contra o vendor
    DISPATCH_SEND_CONCURRENCY: int = 1  # Envios simultaneos dentro de um lote
    CAMPAIGN_LOCK_TIMEOUT_SECONDS: int = 300

    # Reconciliacao de recibos de entrega
    RECEIPT_BATCH_SIZE: int = 100
    RECEIPT_FLUSH_INTERVAL_SECONDS: float = 5.0

    # Consultas de clientes
    CUSTOMER_PAGE_SIZE: int = 1000
    CUSTOMER_IN_CHUNK_SIZE: int = 200  # Limite de ids por filtro in_ (tamanho da URL)

    @property
    def is_production(self) -> bool:
        """Retorna True se está em produção."""
        return self.ENVIRONMENT.lower() == "production"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignora variáveis extras do .env


@lru_cache()
def get_settings() -> Settings:
    """Retorna instância cacheada das configurações."""
    return Settings()


settings = get_settings()
