"""
Orchestrator selection.

The tool-calling strategy is used only when it is configured and an
Anthropic key is present; everything else runs the fixed pipeline.
"""

import logging
from typing import Optional

from app.config import settings
from app.infra.claude import ClaudeClient
from .orchestrator import BaseOrchestrator, PipelineOrchestrator
from .tool_agent import ToolCallingOrchestrator

logger = logging.getLogger(__name__)


def build_orchestrator(mode: Optional[str] = None) -> BaseOrchestrator:
    """Create the orchestrator for a mode ("pipeline" or "tools")."""
    mode = mode or settings.orchestration_mode

    if mode == "tools":
        if ClaudeClient.is_configured():
            logger.info("Using tool-calling orchestrator")
            return ToolCallingOrchestrator()
        logger.warning("Tool orchestration requested without ANTHROPIC_API_KEY; using pipeline")

    logger.info("Using pipeline orchestrator")
    return PipelineOrchestrator()


# Singleton
_orchestrator: Optional[BaseOrchestrator] = None


def get_orchestrator() -> BaseOrchestrator:
    """Get singleton orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


def reset_orchestrator() -> None:
    """Drop the singleton (tests and settings reloads)."""
    global _orchestrator
    _orchestrator = None
