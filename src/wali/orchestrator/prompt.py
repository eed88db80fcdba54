"""Prompt assembly for grounded answers."""

from typing import Any, Sequence

from wali.core.message import Message
from wali.rag.document import SearchResult

DEFAULT_PREAMBLE = (
    "You are a professional knowledge-base assistant. "
    "Answer the user's question based on the provided documents. "
    "If the documents contain no relevant information, say so honestly."
)

NO_CONTEXT = "(no relevant documents found)"


def format_context(results: Sequence[SearchResult]) -> str:
    """Numbered, source-labelled passages in retrieval order."""
    if not results:
        return NO_CONTEXT
    return "\n\n".join(
        f"[{i}] Source: {result.document_name}\n{result.chunk.content}"
        for i, result in enumerate(results, start=1)
    )


def assemble_prompt(
    question: str,
    results: Sequence[SearchResult],
    history: Sequence[Message],
    preamble: str = DEFAULT_PREAMBLE,
) -> list[dict[str, Any]]:
    """
    Build the chat messages sent to the generative model.

    Pure: the output depends only on the arguments, so identical inputs
    always give identical prompts.

    Args:
        question: The user's question
        results: Retrieved chunks, best first
        history: Recent conversation turns, oldest first
        preamble: System instruction

    Returns:
        Messages in chat API format
    """
    messages: list[dict[str, Any]] = [{"role": "system", "content": preamble}]
    messages.extend(message.to_api_format() for message in history)
    messages.append({
        "role": "user",
        "content": f"Reference documents:\n\n{format_context(results)}\n\nQuestion: {question}",
    })
    return messages
