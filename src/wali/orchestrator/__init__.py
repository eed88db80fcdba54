"""Answer orchestration for the knowledge base."""

from .answer import AnswerOrchestrator, AnswerRun, AnswerState, AskResult
from .prompt import DEFAULT_PREAMBLE, assemble_prompt, format_context

__all__ = [
    "AnswerOrchestrator",
    "AnswerRun",
    "AnswerState",
    "AskResult",
    "DEFAULT_PREAMBLE",
    "assemble_prompt",
    "format_context",
]
