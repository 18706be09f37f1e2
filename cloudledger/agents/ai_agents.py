"""
AI Transaction Parser for CloudLedger

Turns a free-text note ("lunch 180 with card, 2 points") into a
structured transaction draft.

CRITICAL BOUNDARIES:
   - CAN: Propose amount, direction, category, description, reward, date
   - CANNOT: Write anything. The result is a ParsedTransaction that the
     user confirms and that then goes through MutationCoordinator.create()
     like any hand-typed entry
   - CANNOT: Invent categories. Anything outside the ledger's list
     collapses to the fallback category

The LLM is a TRANSLATOR, not an ORACLE.
It never participates in sync and never sees the cache.
"""

import json
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import google.generativeai as genai
import structlog

from cloudledger.audit import AuditLogger
from cloudledger.config import GeminiSettings, get_settings
from cloudledger.models.transaction import (
    FALLBACK_CATEGORY,
    ParsedTransaction,
    TransactionKind,
)


logger = structlog.get_logger(__name__)


class ParsingError(Exception):
    """The input could not be turned into a transaction draft."""
    pass


class TransactionParser(ABC):
    """Free text + available categories -> ParsedTransaction."""

    @abstractmethod
    async def parse(
        self,
        text: str,
        categories: list[str],
        today: Optional[date] = None,
    ) -> ParsedTransaction:
        """
        Parse a free-text note.

        Raises:
            ParsingError: If no usable draft could be extracted
        """
        pass


class GeminiTransactionParser(TransactionParser):
    """
    Parser backed by Gemini.

    The model is asked for a single JSON object; we locate it in the
    response text and validate every field ourselves rather than trusting
    the model's output shape.
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        model: Any = None,
    ):
        """
        Args:
            settings: Gemini configuration (from environment if omitted)
            audit_logger: Where parse outcomes are logged
            model: Pre-built model object exposing generate_content_async();
                skips genai configuration when given
        """
        self._audit = audit_logger or AuditLogger()
        if model is not None:
            self._model = model
        else:
            self._settings = settings or get_settings().gemini
            self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,  # Low temperature for consistency
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    def _build_prompt(self, text: str, categories: list[str], today: date) -> str:
        return f"""You are helping record a transaction in a shared household ledger app.

Analyze this financial input: "{text}"
Context: Today is {today.isoformat()}.

Requirements:
1. amount: the number, always positive
2. type: "EXPENSE" or "INCOME"
3. category: select strictly from [{', '.join(categories)}]. If unsure, use "{FALLBACK_CATEGORY}".
4. description: short summary, no numbers
5. rewards: points or cashback value, 0 if none
6. date: YYYY-MM-DD if a date is mentioned, else null

Respond with ONLY a JSON object in this exact format:
{{"amount": 120.5, "type": "EXPENSE", "category": "category_name", "description": "short text", "rewards": 0, "date": null}}"""

    async def parse(
        self,
        text: str,
        categories: list[str],
        today: Optional[date] = None,
    ) -> ParsedTransaction:
        text = text.strip()
        if not text:
            raise ParsingError("Nothing to parse")

        prompt = self._build_prompt(text, categories, today or date.today())

        try:
            response = await self._model.generate_content_async(prompt)
            raw = response.text.strip()
        except Exception as e:
            await self._audit.log_external_service_error("gemini", str(e))
            raise ParsingError(f"AI service unavailable: {e}") from e

        data = _extract_json(raw)
        if data is None:
            logger.warning("parser_response_unreadable", response_length=len(raw))
            raise ParsingError("AI response did not contain a JSON object")

        parsed = interpret_response(data, categories)
        await self._audit.log_transaction_parsed(len(text), parsed.category, parsed.kind.value)
        return parsed


def _extract_json(text: str) -> Optional[dict]:
    """Find the JSON object in a model response (models like to add prose)."""
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        return None
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def interpret_response(data: dict, categories: list[str]) -> ParsedTransaction:
    """
    Validate the model's JSON.

    amount is required; everything else has a default. Negative amounts
    are taken as expenses of the absolute value.

    Raises:
        ParsingError: If there is no usable amount
    """
    amount = _to_decimal(data.get("amount"))
    if amount is None or amount == 0:
        raise ParsingError("No amount found")

    kind = TransactionKind.from_remote(data.get("type"))
    if amount < 0:
        amount = -amount
        kind = TransactionKind.EXPENSE

    category = data.get("category")
    if not isinstance(category, str) or category not in categories:
        category = FALLBACK_CATEGORY

    description = data.get("description")
    reward = _to_decimal(data.get("rewards"))

    parsed_date = None
    raw_date = data.get("date")
    if isinstance(raw_date, str) and raw_date:
        try:
            parsed_date = date.fromisoformat(raw_date[:10])
        except ValueError:
            parsed_date = None

    return ParsedTransaction(
        amount=amount,
        kind=kind,
        category=category,
        description=description.strip() if isinstance(description, str) else "",
        reward=reward if reward is not None and reward >= 0 else Decimal("0"),
        tx_date=parsed_date,
    )


def _to_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() else None
