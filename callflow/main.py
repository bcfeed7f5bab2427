"""
FastAPI server for outbound AI voice agent calls.

This module builds the FastAPI application that the dashboard uses to place
calls and follow their status, and that the telephony provider calls back as
the call progresses. Provider events are merged into one authoritative call
status by the call reconciler; the dashboard client polls that status and
switches to a live voice API channel once the call is connected.
"""

from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from callflow.config.logging_config import configure_logging
from callflow.config.settings import Settings, get_settings
from callflow.errors import CallflowError, CallNotFoundError, InvalidRequestError
from callflow.handlers import agent_routes, call_routes, telephony_routes
from callflow.reconciler.service import CallReconciler
from callflow.services.agent_directory import AgentDirectory
from callflow.services.call_store import CallRecordStore, InMemoryCallRecordStore
from callflow.services.telephony_gateway import ExotelGateway
from callflow.services.voice_session_bridge import VoiceSessionBridge

APP_NAME = "Callflow"
APP_DESCRIPTION = "Outbound phone calls bridged to conversational voice agents"
APP_VERSION = "1.0.0"


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[CallRecordStore] = None,
    telephony_transport: Optional[httpx.AsyncBaseTransport] = None,
    voice_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application and its services.

    Args:
        settings: Runtime settings; read from the environment when omitted
        store: Call record store; a fresh in-memory store when omitted
        telephony_transport: Optional httpx transport for the telephony API
        voice_transport: Optional httpx transport for the voice API

    Returns:
        The configured FastAPI application
    """
    settings = settings or get_settings()
    logger = configure_logging(settings.log_level)

    app = FastAPI(title=APP_NAME, description=APP_DESCRIPTION, version=APP_VERSION)

    gateway = ExotelGateway(settings, transport=telephony_transport)
    bridge = VoiceSessionBridge(settings, transport=voice_transport)
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.bridge = bridge
    app.state.agents = AgentDirectory(default_agent_id=settings.default_agent_id)
    app.state.reconciler = CallReconciler(
        store or InMemoryCallRecordStore(), gateway, bridge, settings
    )

    if not settings.telephony_configured:
        logger.warning("Telephony credentials are incomplete; outbound calls will fail")
    if not settings.voice_api_configured:
        logger.warning("ELEVENLABS_API_KEY is not set; answered calls will be hung up")

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError):
        return JSONResponse(status_code=400, content={"message": str(exc)})

    @app.exception_handler(CallNotFoundError)
    async def not_found_handler(request: Request, exc: CallNotFoundError):
        return JSONResponse(status_code=404, content={"message": str(exc)})

    @app.exception_handler(CallflowError)
    async def provider_error_handler(request: Request, exc: CallflowError):
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc}")
        return JSONResponse(status_code=502, content={"message": str(exc)})

    app.include_router(call_routes.router)
    app.include_router(telephony_routes.router)
    app.include_router(agent_routes.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring system status.

        Returns:
            dict: Service status and whether each provider is configured.
        """
        return {
            "status": "healthy",
            "telephony_configured": settings.telephony_configured,
            "voice_api_configured": settings.voice_api_configured,
        }

    @app.get("/")
    async def root():
        """Root endpoint to display basic information about the API."""
        return {
            "name": APP_NAME,
            "description": APP_DESCRIPTION,
            "version": APP_VERSION,
            "endpoints": {
                "/calls": "Initiate and list calls",
                "/calls/{call_id}/status": "Poll a call's status",
                "/calls/{call_id}/hangup": "End a call",
                "/telephony/answer": "Telephony answer webhook",
                "/telephony/status": "Telephony status webhook",
                "/agents": "Voice agent registry",
                "/signed-url": "Signed URL for a browser test conversation",
                "/health": "Health check endpoint",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
