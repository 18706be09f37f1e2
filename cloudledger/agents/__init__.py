"""AI Agents package."""

from cloudledger.agents.ai_agents import (
    GeminiTransactionParser,
    ParsingError,
    TransactionParser,
    interpret_response,
)

__all__ = [
    "GeminiTransactionParser",
    "ParsingError",
    "TransactionParser",
    "interpret_response",
]
