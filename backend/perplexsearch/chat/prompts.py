"""
System prompt assembly for chat turns.
"""

from typing import Dict, Optional

SUGGESTIONS_MARKER = "[[SUGGESTIONS]]"

MODE_PROMPTS: Dict[str, str] = {
    "concise": "Be precise, concise, and direct in your answers.",
    "academic": (
        "You are an academic researcher. Provide detailed, technical answers "
        "with heavy reliance on citations. Use formal language."
    ),
    "writing": (
        "You are a creative writing assistant. Focus on flow, style, and "
        "engaging narrative. You can be more verbose."
    ),
    "copilot": (
        "You are a helpful co-pilot. Break down complex problems into steps "
        "and ask clarifying questions if necessary."
    ),
    "deep-research": (
        "You are a Deep Research Agent. Your goal is to exhaustively research "
        "the user's query."
    ),
}

DEFAULT_MODE = "concise"

FOLLOW_UP_INSTRUCTION = f"""
At the VERY END of your response, provide exactly 3 suggested follow-up questions.
Format:
---
{SUGGESTIONS_MARKER}
1. Question 1
2. Question 2
3. Question 3
"""


def mode_prompt(mode: Optional[str]) -> str:
    """Instruction for ``mode``; unknown modes fall back to concise."""
    return MODE_PROMPTS.get(mode or DEFAULT_MODE, MODE_PROMPTS[DEFAULT_MODE])


def build_system_prompt(
    mode: Optional[str],
    system_instruction: str = "",
    project_context: str = "",
) -> str:
    """
    Build the combined system prompt sent with every turn.

    Order: mode instruction, the user's custom instruction, the
    ``RESEARCH CONTEXT:`` line, then the follow-up suggestion block.
    The follow-up block is appended regardless of mode.
    """
    sections = [
        mode_prompt(mode),
        system_instruction.strip(),
        f"RESEARCH CONTEXT: {project_context.strip()}",
        FOLLOW_UP_INSTRUCTION.strip(),
    ]
    return "\n".join(s for s in sections if s).strip()
