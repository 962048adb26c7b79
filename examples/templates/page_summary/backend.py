"""Completion backends for the Page Summary pipeline.

Stages only need "system prompt + user prompt in, text out", so the model
client is injected behind a small protocol. MockCompletionBackend answers
from canned replies and is what ``python -m page_summary run --mock`` uses.
"""

import asyncio
import json
import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class CompletionBackend(Protocol):
    async def complete(self, system: str, prompt: str) -> str: ...


MOCK_REPLIES: dict[str, str] = {
    "navigator": json.dumps(
        {
            "page_type": "checkout",
            "main_purpose": "Buy an annual streaming subscription",
            "complexity": "moderate",
            "sections": [
                {"title": "Plan", "summary": "Annual plan at $119.99/year"},
                {"title": "Payment", "summary": "Card details and billing address"},
            ],
            "identified_ctas": [
                {"label": "Start free trial", "purpose": "Begins a paid plan after 7 days",
                 "importance": "critical"},
                {"label": "Add gift card", "purpose": "Apply a gift card balance",
                 "importance": "optional"},
            ],
        }
    ),
    "security": json.dumps(
        {
            "risk_level": "high",
            "financial_actions": [
                {
                    "action": "Start free trial",
                    "description": "Card is charged $119.99 when the trial ends",
                    "risk": "high",
                    "reversible": False,
                    "warning": "Cancel before day 7 to avoid the annual charge",
                }
            ],
            "data_collection_warnings": ["Billing address is shared with partners"],
            "dark_patterns": [
                {
                    "type": "hidden_cost",
                    "description": "Renewal price only shown in the footer",
                    "location": "footer",
                    "severity": "severe",
                }
            ],
            "recommendations": ["Set a reminder before the trial ends"],
        }
    ),
    "compassionate": json.dumps(
        {
            "title": "Starting a streaming subscription",
            "summary": "This page signs you up for a free week, then a yearly plan.",
            "key_points": ["The first 7 days are free", "After that you pay $119.99 at once"],
            "legal_notes": [
                {"original": "Auto-renews annually", "simplified": "It renews every year",
                 "importance": "high"}
            ],
            "warnings": ["You will be charged unless you cancel in time"],
            "tone": "warm",
            "reasoning": "Plain words, money first",
        }
    ),
    "technical": json.dumps(
        {
            "title": "Annual subscription checkout",
            "summary": "7-day trial converting to a $119.99/year auto-renewing plan.",
            "key_points": ["Trial converts automatically", "Renewal is annual, non-prorated"],
            "legal_notes": [
                {"original": "No refunds for partial periods",
                 "simplified": "No money back if you cancel mid-year", "importance": "high"}
            ],
            "warnings": ["Billing address shared with partners"],
            "tone": "precise",
            "reasoning": "Exact terms",
        }
    ),
    "arbiter": json.dumps(
        {
            "chosen_writer": "merged",
            "reasoning": "Compassionate framing with the technical refund terms",
            "merged_content": {
                "title": "Starting a streaming subscription",
                "summary": "A free week, then $119.99 charged once a year until you cancel.",
                "key_points": [
                    "The first 7 days are free",
                    "After that you pay $119.99 at once",
                    "No money back if you cancel mid-year",
                ],
                "legal_notes": [
                    {"original": "No refunds for partial periods",
                     "simplified": "No money back if you cancel mid-year", "importance": "high"}
                ],
                "warnings": ["You will be charged unless you cancel in time"],
            },
            "disagreements": [],
        }
    ),
    "guardian": json.dumps(
        {
            "is_complete": True,
            "missing_critical_info": [],
            "oversimplifications": [],
            "security_concerns_addressed": True,
            "accuracy": "high",
            "suggestions": [],
            "approved": True,
        }
    ),
}


class MockCompletionBackend:
    """
    Answers from canned replies keyed by agent role.

    The role is matched against the first line of the system prompt
    ("You are the Navigator agent..."). Every call is recorded in
    ``calls`` for inspection.
    """

    def __init__(self, replies: dict[str, str] | None = None, delay: float = 0.0):
        self.replies = dict(MOCK_REPLIES if replies is None else replies)
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system: str, prompt: str) -> str:
        self.calls.append((system, prompt))
        if self.delay:
            await asyncio.sleep(self.delay)

        header = system.splitlines()[0].lower() if system else ""
        for role, reply in self.replies.items():
            if role in header:
                logger.debug(f"Mock reply for role '{role}'")
                return reply
        raise LookupError(f"No mock reply for system prompt {header!r}")
