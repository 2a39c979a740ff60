"""
Conversation Module

Per-message orchestration of the intake conversation:
- State: explicit session state and the response directive
- Flow: branch decision (selection, booking, information gathering)
- Crisis: deterministic crisis short-circuit
- Orchestrators: fixed pipeline and Claude tool-calling strategies
"""

from app.core.conversation.state import (
    ConversationState,
    NextAction,
    OrchestratorResponse,
    TherapistSummary,
)
from app.core.conversation.flow import Branch, ConversationFlow, FlowAction, get_conversation_flow
from app.core.conversation.crisis import CrisisHandler
from app.core.conversation.orchestrator import BaseOrchestrator, PipelineOrchestrator
from app.core.conversation.tool_agent import ToolCallingOrchestrator
from app.core.conversation.dispatch import build_orchestrator, get_orchestrator, reset_orchestrator

__all__ = [
    # State
    "ConversationState",
    "NextAction",
    "OrchestratorResponse",
    "TherapistSummary",
    # Flow
    "Branch",
    "ConversationFlow",
    "FlowAction",
    "get_conversation_flow",
    # Crisis
    "CrisisHandler",
    # Orchestrators
    "BaseOrchestrator",
    "PipelineOrchestrator",
    "ToolCallingOrchestrator",
    "build_orchestrator",
    "get_orchestrator",
    "reset_orchestrator",
]
