from fastapi import Request

from layer_agent.domain.orchestration.core.main_agent import AgentOrchestrator


def get_orchestrator(request: Request) -> AgentOrchestrator:
    """Orchestrator shared by every request of the app"""
    return request.app.state.orchestrator
