"""
Tests for the AI transaction parser.

The Gemini model is replaced by a fake exposing generate_content_async();
no network calls are made.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from cloudledger.agents import (
    GeminiTransactionParser,
    ParsingError,
    interpret_response,
)
from cloudledger.audit import AuditLogger
from cloudledger.models import AuditEventType, TransactionKind
from cloudledger.services.storage import InMemoryAuditStorage


CATEGORIES = ["Dining", "Transport", "Salary", "Other"]


class FakeResponse:
    def __init__(self, text: str):
        self.text = text


class FakeModel:
    """Returns a canned reply, or raises, and records the prompts it saw."""

    def __init__(self, reply: str = "", error: Exception = None):
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def generate_content_async(self, prompt: str) -> FakeResponse:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return FakeResponse(self.reply)


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


def make_parser(model: FakeModel, audit_storage: InMemoryAuditStorage) -> GeminiTransactionParser:
    return GeminiTransactionParser(audit_logger=AuditLogger(audit_storage), model=model)


class TestGeminiTransactionParser:
    """Tests for GeminiTransactionParser.parse."""

    def test_parses_json_wrapped_in_prose(self, audit_storage):
        model = FakeModel(
            'Sure! Here it is:\n```json\n{"amount": 180, "type": "EXPENSE", "category": "Dining", '
            '"description": "lunch", "rewards": 2, "date": "2024-05-01"}\n```'
        )
        parser = make_parser(model, audit_storage)

        parsed = asyncio.run(parser.parse("lunch 180, 2 points", CATEGORIES, today=date(2024, 5, 2)))

        assert parsed.amount == Decimal("180")
        assert parsed.kind == TransactionKind.EXPENSE
        assert parsed.category == "Dining"
        assert parsed.description == "lunch"
        assert parsed.reward == Decimal("2")
        assert parsed.tx_date == date(2024, 5, 1)
        assert AuditEventType.TRANSACTION_PARSED in [e.event_type for e in audit_storage.events]

    def test_prompt_lists_categories_and_today(self, audit_storage):
        model = FakeModel('{"amount": 1}')
        parser = make_parser(model, audit_storage)

        asyncio.run(parser.parse("coffee 1", CATEGORIES, today=date(2024, 5, 2)))

        assert "Dining, Transport, Salary, Other" in model.prompts[0]
        assert "2024-05-02" in model.prompts[0]

    def test_empty_text_never_calls_model(self, audit_storage):
        model = FakeModel('{"amount": 1}')
        parser = make_parser(model, audit_storage)

        with pytest.raises(ParsingError):
            asyncio.run(parser.parse("   ", CATEGORIES))
        assert model.prompts == []

    def test_model_failure_becomes_parsing_error(self, audit_storage):
        parser = make_parser(FakeModel(error=RuntimeError("quota exceeded")), audit_storage)

        with pytest.raises(ParsingError, match="quota exceeded"):
            asyncio.run(parser.parse("taxi 20", CATEGORIES))

        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.EXTERNAL_SERVICE_ERROR in types

    def test_response_without_json(self, audit_storage):
        parser = make_parser(FakeModel("I could not find an amount."), audit_storage)

        with pytest.raises(ParsingError):
            asyncio.run(parser.parse("hello", CATEGORIES))


class TestInterpretResponse:
    """Tests for the field-by-field validation of the model's JSON."""

    def test_unknown_category_falls_back(self):
        parsed = interpret_response({"amount": 10, "category": "Yachts"}, CATEGORIES)

        assert parsed.category == "Other"

    def test_negative_amount_is_expense(self):
        parsed = interpret_response({"amount": -12.5, "type": "INCOME"}, CATEGORIES)

        assert parsed.amount == Decimal("12.5")
        assert parsed.kind == TransactionKind.EXPENSE

    def test_income(self):
        parsed = interpret_response({"amount": "5000", "type": "income", "category": "Salary"}, CATEGORIES)

        assert parsed.kind == TransactionKind.INCOME
        assert parsed.amount == Decimal("5000")

    @pytest.mark.parametrize("amount", [None, 0, "lots", True])
    def test_unusable_amount(self, amount):
        with pytest.raises(ParsingError):
            interpret_response({"amount": amount}, CATEGORIES)

    def test_defaults(self):
        parsed = interpret_response({"amount": 3, "rewards": -1, "date": "someday"}, CATEGORIES)

        assert parsed.reward == Decimal("0")
        assert parsed.tx_date is None
        assert parsed.description == ""

    def test_draft_uses_default_date(self):
        parsed = interpret_response({"amount": 3, "category": "Transport"}, CATEGORIES)
        draft = parsed.to_draft(default_date=date(2024, 7, 7))

        assert draft.tx_date == date(2024, 7, 7)
        assert draft.category == "Transport"
