"""
Voice agent registry endpoints.
"""

from fastapi import APIRouter, Depends, Response

from callflow.handlers.dependencies import get_agents
from callflow.models.api_schemas import AgentCreateRequest, AgentListResponse, AgentResponse
from callflow.services.agent_directory import AgentDirectory, VoiceAgent

router = APIRouter(prefix="/agents", tags=["agents"])


def _to_response(agent: VoiceAgent) -> AgentResponse:
    return AgentResponse(agentId=agent.agent_id, name=agent.name, disabled=agent.disabled)


@router.get("", response_model=AgentListResponse)
async def list_agents(agents: AgentDirectory = Depends(get_agents)):
    return AgentListResponse(agents=[_to_response(a) for a in agents.list()])


@router.post("", response_model=AgentResponse, status_code=201)
async def create_agent(body: AgentCreateRequest, agents: AgentDirectory = Depends(get_agents)):
    agent = await agents.register(body.agentId, body.name, body.disabled)
    return _to_response(agent)


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: str, agents: AgentDirectory = Depends(get_agents)):
    return _to_response(agents.get(agent_id))


@router.delete("/{agent_id}", status_code=204)
async def delete_agent(agent_id: str, agents: AgentDirectory = Depends(get_agents)):
    await agents.remove(agent_id)
    return Response(status_code=204)
