"""
Testes para o CampaignService.
"""
import pytest
from unittest.mock import AsyncMock

from crm.core.exceptions import NotFoundError, ValidationError
from crm.core.timezone import utc_now
from crm.repositories.campaign import CampaignRepository
from crm.repositories.customer import CustomerRepository
from crm.repositories.message import MessageRepository
from crm.repositories.segment import SegmentRepository
from crm.services.campaigns.dispatcher import CampaignDispatcher
from crm.services.campaigns.service import CampaignService
from crm.services.campaigns.types import CampaignStatus
from crm.services.vendor import VendorProvider, VendorSendResult


class AcceptAllVendor(VendorProvider):

    async def send(self, body, customer_id, message_id):
        return VendorSendResult(message_id=message_id, status="ACCEPTED", timestamp=utc_now())


@pytest.fixture
def dispatcher(seeded_db, lock_factory):
    return CampaignDispatcher(
        CampaignRepository(seeded_db),
        SegmentRepository(seeded_db),
        MessageRepository(seeded_db),
        CustomerRepository(seeded_db),
        AcceptAllVendor(),
        batch_delay=0,
        lock_factory=lock_factory,
    )


@pytest.fixture
def service(seeded_db, dispatcher):
    return CampaignService(
        CampaignRepository(seeded_db),
        SegmentRepository(seeded_db),
        MessageRepository(seeded_db),
        dispatcher,
    )


async def _create_segment(db):
    return await SegmentRepository(db).create(
        "VIPs", {}, "total_spend > 1000", ["c1", "c4", "c5"], "ana"
    )


class TestCreateCampaign:

    @pytest.mark.asyncio
    async def test_cria_em_draft(self, service, seeded_db):
        segment = await _create_segment(seeded_db)
        campaign = await service.create_campaign(" Black Friday ", segment.id, "Oi {{name}}", "ana")

        assert campaign.name == "Black Friday"
        assert campaign.status == CampaignStatus.DRAFT
        assert campaign.audience_size == 3
        assert campaign.stats.total == 0

    @pytest.mark.asyncio
    async def test_create_e_start(self, service, dispatcher, seeded_db):
        segment = await _create_segment(seeded_db)
        campaign = await service.create_campaign("BF", segment.id, "Oi {{name}}", "ana", start=True)

        assert campaign.status == CampaignStatus.RUNNING
        assert campaign.stats.total == 3
        await dispatcher.wait(campaign.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,template", [("", "Oi"), ("  ", "Oi"), ("BF", ""), ("BF", "   ")])
    async def test_campos_obrigatorios(self, service, seeded_db, name, template):
        segment = await _create_segment(seeded_db)
        with pytest.raises(ValidationError):
            await service.create_campaign(name, segment.id, template, "ana")

    @pytest.mark.asyncio
    async def test_segmento_inexistente(self, service, seeded_db):
        with pytest.raises(NotFoundError):
            await service.create_campaign("BF", "nao-existe", "Oi", "ana")

        assert seeded_db.rows("campaigns") == []

    @pytest.mark.asyncio
    async def test_start_delegado_ao_dispatcher(self):
        dispatcher = AsyncMock()
        service = CampaignService(AsyncMock(), AsyncMock(), AsyncMock(), dispatcher)

        await service.start_campaign("camp-1")

        dispatcher.start_campaign.assert_awaited_once_with("camp-1")


class TestConsultas:

    @pytest.mark.asyncio
    async def test_get_campaign_inexistente(self, service):
        with pytest.raises(NotFoundError):
            await service.get_campaign("nao-existe")

    @pytest.mark.asyncio
    async def test_list_campaigns_mais_recentes_primeiro(self, service, seeded_db):
        segment = await _create_segment(seeded_db)
        await service.create_campaign("Primeira", segment.id, "Oi", "ana")
        await service.create_campaign("Segunda", segment.id, "Oi", "ana")
        await service.create_campaign("De outro", segment.id, "Oi", "bruno")

        campaigns = await service.list_campaigns("ana")

        assert [c.name for c in campaigns] == ["Segunda", "Primeira"]

    @pytest.mark.asyncio
    async def test_relatorio_de_entrega(self, service, dispatcher, seeded_db):
        segment = await _create_segment(seeded_db)
        campaign = await service.create_campaign("BF", segment.id, "Oi {{name}}", "ana", start=True)
        await dispatcher.wait(campaign.id)

        # Um recibo de entrega ja aplicado
        row = next(r for r in seeded_db.rows("communication_logs") if r["customer_id"] == "c1")
        row["status"] = "DELIVERED"

        report = await service.get_campaign_report(campaign.id)

        assert report.status == CampaignStatus.COMPLETED
        assert report.total == 3
        assert report.sent == 3
        assert report.failed == 0
        assert report.success_rate == 100.0
        assert report.delivery_stats == {"sent": 2, "delivered": 1}
        assert report.to_dict()["status"] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_relatorio_de_campanha_em_draft(self, service, seeded_db):
        segment = await _create_segment(seeded_db)
        campaign = await service.create_campaign("BF", segment.id, "Oi", "ana")

        report = await service.get_campaign_report(campaign.id)

        assert report.total == 0
        assert report.success_rate == 0.0
        assert report.delivery_stats == {}
