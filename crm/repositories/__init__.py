"""
Repositories - Camada de acesso a dados.

Este modulo implementa o padrao Repository para desacoplar
a logica de negocio do banco de dados.

Vantagens:
- Testes unitarios sem mocks complexos de import
- Servicos recebem repositories por injecao no construtor
- Facilidade para trocar banco de dados no futuro

Entidades disponiveis:
- Customer: snapshot somente leitura do cliente
- SegmentData: segmento com audiencia resolvida
- CampaignData: campanha e contadores
- MessageData: entrada do communication log
"""

from .base import BaseRepository, chunked
from .customer import CustomerRepository, Customer
from .segment import SegmentRepository
from .campaign import CampaignRepository
from .message import MessageRepository
from .deps import (
    create_customer_repo,
    create_segment_repo,
    create_campaign_repo,
    create_message_repo,
)

__all__ = [
    # Base
    "BaseRepository",
    "chunked",
    # Entidades
    "CustomerRepository",
    "Customer",
    "SegmentRepository",
    "CampaignRepository",
    "MessageRepository",
    # Dependency injection
    "create_customer_repo",
    "create_segment_repo",
    "create_campaign_repo",
    "create_message_repo",
]
