"""
agent.py
--------
Loop AI - Hospital Network Assistant - LLM Tool Surface
-------------------------------------------------------
The prompt and the LangChain tools handed to the external LLM agent.  The
model decides WHICH lookup to call; every fact it speaks comes back from a
tool, which in turn goes through the Match Engine and Disambiguation
Policy.  The model itself, and the loop that runs it, live outside this
package.

Agent Flow:
    1. Caller asks a question by voice (already transcribed)
    2. The LLM picks a tool using SYSTEM_PROMPT's selection rules
    3. The tool returns policy text (an answer, or a city question)
    4. The LLM speaks it briefly, or emits FORWARD_TO_HUMAN: for anything
       that is not about network hospitals

Tools Available:
    - get_hospital_details, confirm_hospital_in_network, find_hospital_location
    - get_hospitals_by_city, search_hospitals, get_emergency_info

Project: Loop AI - Hospital Network Assistant
"""

from typing import List, Optional

from langchain_core.prompts import ChatPromptTemplate
from langchain_core.tools import BaseTool, tool

import tools as directory_tools
from assistant_core import AssistantCore
from escalation import FORWARD_MARKER

# ── System Prompt ─────────────────────────────────────────────────────────────

SYSTEM_PROMPT = f"""You are Loop AI, a voice assistant for a hospital network.
Callers ask whether hospitals are in their network, where they are, and
which hospitals are available in their city.

Keep every response brief: one or two short sentences that sound natural
when spoken aloud.

CRITICAL RULE - ALWAYS CALL A TOOL FOR HOSPITAL DATA:
Never answer from memory or from conversation history alone.  History is
ONLY used to resolve which hospital or city the caller means.

Tool selection:
- "Is X in my network?"                  → tool_confirm_hospital_in_network
- "Tell me about X" / "address of X"     → tool_get_hospital_details
- "Where is X?" / "which city is X in?"  → tool_find_hospital_location
- "Hospitals in <city>"                  → tool_get_hospitals_by_city
- Vague requests ("a heart hospital near Whitefield") → tool_search_hospitals
- Medical emergencies                    → tool_get_emergency_info

Pass the city ONLY when the caller said one.  Never invent a city and never
pass placeholders like "unknown".  If a tool asks which city, ask the caller
exactly that and wait for the answer.

If the request has nothing to do with hospitals in the network, reply with
exactly:
{FORWARD_MARKER} I'm sorry, I can't help with that. I am forwarding this to a human agent."""


def build_prompt() -> ChatPromptTemplate:
    """Prompt template used by the orchestrator's tool-calling agent."""
    return ChatPromptTemplate.from_messages([
        ("system", SYSTEM_PROMPT),
        ("human", "{input}"),
        ("placeholder", "{agent_scratchpad}"),
    ])


# ── Tool Factory ──────────────────────────────────────────────────────────────

def build_tools(core: AssistantCore) -> List[BaseTool]:
    """
    Wrap the directory tools for LangChain, bound to *core*'s Match Engine.

    Each tool returns the policy message text, which is what the LLM speaks.

    Returns:
        List[BaseTool]: Ready to pass to a tool-calling agent.
    """
    engine = core.engine

    @tool
    def tool_get_hospital_details(hospital_name: str, city: Optional[str] = None) -> str:
        """
        Get details (city and address) of a specific network hospital.
        Args:
            hospital_name: Hospital name as the caller said it, e.g. "Apollo Sarjapur"
            city: City the caller mentioned, or omit if they did not say one
        """
        return directory_tools.get_hospital_details(engine, hospital_name, city).message

    @tool
    def tool_confirm_hospital_in_network(hospital_name: str, city: Optional[str] = None) -> str:
        """
        Confirm whether a hospital is in the caller's network.
        Args:
            hospital_name: Hospital name as the caller said it
            city: City the caller mentioned, or omit if they did not say one
        """
        return directory_tools.confirm_hospital_in_network(engine, hospital_name, city).message

    @tool
    def tool_find_hospital_location(hospital_name: str) -> str:
        """
        Find which city a network hospital is located in.
        Args:
            hospital_name: Hospital name as the caller said it
        """
        return directory_tools.find_hospital_location(engine, hospital_name).message

    @tool
    def tool_get_hospitals_by_city(city: str) -> str:
        """
        List network hospitals in a city. Accepts common spellings like Bombay or Bangalore.
        Args:
            city: City name
        """
        return directory_tools.get_hospitals_by_city(engine, city, core.settings.default_max_results).message

    @tool
    def tool_search_hospitals(query: str, city: Optional[str] = None) -> str:
        """
        Keyword search over hospital names, addresses and specialties. Use only
        when the caller did not name a specific hospital.
        Args:
            query: What the caller is looking for, e.g. "cardiology Whitefield"
            city: City the caller mentioned, or omit
        """
        return directory_tools.search_hospitals(engine, query, city, core.settings.default_max_results).message

    @tool
    def tool_get_emergency_info(city: Optional[str] = None) -> str:
        """
        Emergency phone numbers and nearby network hospitals.
        Args:
            city: City the caller is in, or omit
        """
        return directory_tools.get_emergency_info(engine, city).message

    return [
        tool_get_hospital_details,
        tool_confirm_hospital_in_network,
        tool_find_hospital_location,
        tool_get_hospitals_by_city,
        tool_search_hospitals,
        tool_get_emergency_info,
    ]
