"""
Dependency Injection para Repositories.

Os factories `create_*_repo` ligam cada repository a um cliente de banco
(Supabase em producao, FakeSupabase ou MagicMock nos testes).

Uso em testes:
    from crm.repositories.deps import create_campaign_repo

    def test_buscar_campanha(fake_db):
        repo = create_campaign_repo(fake_db)
        # Testar sem patches!
"""
from .campaign import CampaignRepository
from .customer import CustomerRepository
from .message import MessageRepository
from .segment import SegmentRepository


def create_customer_repo(db_client) -> CustomerRepository:
    """
    Cria CustomerRepository com o cliente de banco informado.

    Util para testes:
        repo = create_customer_repo(fake_db)
    """
    return CustomerRepository(db_client)


def create_segment_repo(db_client) -> SegmentRepository:
    return SegmentRepository(db_client)


def create_campaign_repo(db_client) -> CampaignRepository:
    return CampaignRepository(db_client)


def create_message_repo(db_client) -> MessageRepository:
    return MessageRepository(db_client)
