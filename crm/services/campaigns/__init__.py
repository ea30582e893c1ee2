"""
Campanhas: maquina de estados, personalizacao, disparo e relatorios.
"""
from .types import (
    CampaignData,
    CampaignReport,
    CampaignStats,
    CampaignStatus,
    MessageData,
    MessageStatus,
)
from .state import (
    CampaignStateMachine,
    can_transition,
    ensure_transition,
    message_can_transition,
    stats_delta,
)
from .templates import render_template
from .dispatcher import CampaignDispatcher
from .service import CampaignService

__all__ = [
    "CampaignData",
    "CampaignReport",
    "CampaignStats",
    "CampaignStatus",
    "MessageData",
    "MessageStatus",
    "CampaignStateMachine",
    "can_transition",
    "ensure_transition",
    "message_can_transition",
    "stats_delta",
    "render_template",
    "CampaignDispatcher",
    "CampaignService",
]
