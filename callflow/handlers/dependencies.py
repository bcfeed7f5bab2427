"""
FastAPI dependencies shared by the route modules.

Services are created once in ``callflow.main.create_app`` and kept on
``app.state``; these helpers hand them to the routes.
"""

from typing import Optional

from fastapi import Header, Request

from callflow.config.settings import Settings
from callflow.reconciler.service import CallReconciler
from callflow.services.agent_directory import AgentDirectory
from callflow.services.telephony_gateway import ExotelGateway
from callflow.services.voice_session_bridge import VoiceSessionBridge

ANONYMOUS_USER = "anonymous"


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity of the dashboard user; authentication happens upstream."""
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    return ANONYMOUS_USER


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_reconciler(request: Request) -> CallReconciler:
    return request.app.state.reconciler


def get_agents(request: Request) -> AgentDirectory:
    return request.app.state.agents


def get_gateway(request: Request) -> ExotelGateway:
    return request.app.state.gateway


def get_bridge(request: Request) -> VoiceSessionBridge:
    return request.app.state.bridge
