"""
Pipebot FastAPI Application - Chat-driven CI pipeline runner.

This is the main entry point for the Pipebot API.
It delegates message handling to the RunPipelineService.

DESIGN PRINCIPLE:
- main.py is a THIN HTTP LAYER
- All business logic lives in run_pipeline_service
- main.py only handles: HTTP concerns, request validation, response formatting
"""

import logging
import colorlog
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from pipebot.conversation.state_store import ConversationStore
from pipebot.models.message import ChatMessage
from pipebot.services.bitbucket_client import BitbucketClient
from pipebot.services.chat_client import SLACK_BOT_TOKEN, ChatClient
from pipebot.services.conversation_coordinator import SlotFillingCoordinator
from pipebot.services.dispatch_engine import DispatchEngine
from pipebot.services.notification_composer import Notifier
from pipebot.services.run_pipeline_service import RunPipelineService
from pipebot.services.scenario_catalog import ScenarioCatalog

# Load environment variables
load_dotenv()

# =============================================================================
# CONFIGURATION
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Configure logging

def setup_global_color_logging():
    # Configure root logger
    logging.basicConfig(level=getattr(logging, LOG_LEVEL.upper()))
    root_logger = logging.getLogger()

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s%(levelname)-8s%(reset)s %(name)s: %(message)s",
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'bold_red',
        }
    ))
    root_logger.addHandler(handler)

setup_global_color_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION STATE
# =============================================================================

class AppState:
    """Application state container for dependencies."""
    catalog: ScenarioCatalog
    service: RunPipelineService


app_state = AppState()


def build_service(catalog: ScenarioCatalog, chat_client: Optional[ChatClient] = None) -> RunPipelineService:
    """Wire the service from environment configuration."""
    coordinator = SlotFillingCoordinator(ConversationStore(), catalog)
    engine = DispatchEngine(BitbucketClient())
    return RunPipelineService(coordinator, engine, Notifier(chat_client))


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup, stop dispatching on shutdown."""
    logger.info("Starting Pipebot API...")

    app_state.catalog = ScenarioCatalog()
    logger.info(f"Loaded scenario '{app_state.catalog.event_name}' v{app_state.catalog.version}")

    chat_client = ChatClient() if SLACK_BOT_TOKEN else None
    if chat_client is None:
        logger.warning("SLACK_BOT_TOKEN not set, replies are only returned over HTTP")

    app_state.service = build_service(app_state.catalog, chat_client)
    logger.info("Pipebot API started successfully")

    yield

    logger.info("Shutting down Pipebot API...")
    app_state.service.shutdown()


# =============================================================================
# FASTAPI APP
# =============================================================================

app = FastAPI(
    title="Pipebot API",
    description="Runs Bitbucket pipelines from chat commands",
    version="2.0.0",
    lifespan=lifespan,
)


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "pipebot-api"}


@app.post(
    "/messages",
    tags=["Messages"],
    summary="Handle an inbound chat message",
    description="Extract the run-pipeline command, ask for what is missing, or trigger the pipelines",
)
def handle_message(message: ChatMessage):
    """
    Handle one chat message.

    Clarifying questions and rejected commands are normal replies, so the
    status is always 200; `success` and `stage` tell them apart.
    """
    response = app_state.service.handle(message)
    if not response.success:
        logger.warning(f"Message in {message.channel} rejected at stage '{response.stage}'")
    return JSONResponse(content=response.to_dict())


@app.get("/scenario", tags=["Scenario"])
async def get_scenario(installed_version: Optional[str] = Query(default=None)):
    """Scenario definition for hosts that install or migrate it."""
    definition = app_state.catalog.definition()
    definition["needs_update"] = app_state.catalog.needs_update(installed_version)
    return definition


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))

    uvicorn.run(app, host=host, port=port)
