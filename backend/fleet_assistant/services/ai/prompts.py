"""
System prompts and message assembly shared by the coordinator and agents.
"""
from typing import Dict, List, Sequence

from fleet_assistant.models.query import QueryRequest
from fleet_assistant.services.ai.schema import DomainResult

MAX_HISTORY_MESSAGES = 10
HISTORY_ROLES = ("user", "assistant")

PLANNING_PROMPT = (
    "You are the planning agent of a fleet management assistant. "
    "Read the user's question and explain briefly which areas of fleet operations it "
    "touches (fuel, maintenance, driver safety, location, insurance, costs) and what "
    "information would answer it. If the question is general, answer it directly "
    "from fleet management best practice. Keep the answer under 200 words."
)

SYNTHESIS_PROMPT = (
    "You are the planning agent of a fleet management assistant. Specialist agents "
    "have analysed the user's question. Combine their findings into one clear, "
    "actionable answer. Do not invent figures that the specialists did not report, "
    "say when data was unavailable, and keep the answer concise."
)

FUEL_PROMPT = (
    "You are a fleet fuel efficiency specialist. Analyse fuel consumption, MPG, fuel "
    "costs and fueling patterns. Use the available tools to fetch fuel and vehicle "
    "data before answering; if no tools are available, give best-practice guidance "
    "and say that live data was not available."
)

MAINTENANCE_PROMPT = (
    "You are a fleet maintenance specialist. Analyse service history, open work "
    "orders, fault codes and upcoming preventive maintenance. Use the available "
    "tools to fetch maintenance data before answering; if no tools are available, "
    "give best-practice guidance and say that live data was not available."
)

SAFETY_PROMPT = (
    "You are a fleet safety and compliance specialist. Analyse driver behaviour, "
    "harsh-driving and safety events, hours-of-service compliance and vehicle "
    "locations. Use the available tools to fetch safety data before answering; if no "
    "tools are available, give best-practice guidance and say that live data was "
    "not available."
)


def build_history(request: QueryRequest) -> List[Dict[str, str]]:
    """The last MAX_HISTORY_MESSAGES user/assistant turns as chat messages."""
    turns = [m for m in request.conversation_history if m.role in HISTORY_ROLES]
    return [{"role": m.role, "content": m.content} for m in turns[-MAX_HISTORY_MESSAGES:]]


def build_user_message(request: QueryRequest) -> str:
    """The user's message with any request context appended."""
    if not request.context:
        return request.message
    context = ", ".join(f"{key}: {value}" for key, value in request.context.items())
    return f"{request.message}\n\nAdditional context: {context}"


def build_synthesis_message(
    request: QueryRequest,
    planning_analysis: str,
    results: Sequence[DomainResult],
) -> str:
    sections = [
        f"Original question: {request.message}",
        f"Planning analysis: {planning_analysis}",
    ]
    for result in results:
        sections.append(f"{result.agent.title()} specialist: {result.response}")
    return "\n\n".join(sections)
