from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import Settings
from listing import amount_text
from schemas import Transaction


logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are an expert personal financial advisor. "
    "Your tone is encouraging, professional, and data-driven."
)
EMPTY_REPLY_TEXT = "Could not generate insights at this time."
SERVICE_ERROR_TEXT = "Error connecting to AI service. Please try again later."
PROMPT_TRANSACTION_LIMIT = 50

GENAI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

_PROMPT_TEMPLATE = """\
Analyze the following recent financial transactions for a personal finance app user (Currency: {code} {symbol}).
Provide a concise, friendly, and actionable summary (max 300 words).

Structure your response with:
1. **Spending Patterns**: Highlight main expense categories or unusual spikes.
2. **Savings Potential**: Identify areas where they could cut back.
3. **Positive Feedback**: Acknowledge good habits (e.g., saving, regular income).

Transaction Log:
{log}
"""


class TextGenerationError(RuntimeError):
    pass


class TextGenerator(ABC):
    @abstractmethod
    async def generate(
        self, prompt: str, *, system_instruction: str, temperature: float
    ) -> Optional[str]:
        """Return the generated text, or None when the reply carries none."""


def transaction_line(txn: Transaction, currency_symbol: str) -> str:
    return (
        f"{txn.date.isoformat()}: {txn.type.value.upper()} - "
        f"{currency_symbol}{amount_text(txn.amount)} ({txn.category}) - {txn.notes or ''}"
    )


def build_prompt(
    transactions: Iterable[Transaction],
    currency_code: str = "INR",
    currency_symbol: str = "₹",
    limit: int = PROMPT_TRANSACTION_LIMIT,
) -> str:
    lines = [
        transaction_line(txn, currency_symbol)
        for _, txn in zip(range(limit), transactions)
    ]
    return _PROMPT_TEMPLATE.format(
        code=currency_code, symbol=currency_symbol, log="\n".join(lines)
    )


class GeminiTextGenerator(TextGenerator):
    """Client for the Generative Language ``generateContent`` REST call."""

    def __init__(self, api_key: str, model: str, *, timeout: float = 30.0) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional[GeminiTextGenerator]:
        if not settings.genai_api_key:
            return None
        return cls(
            settings.genai_api_key,
            settings.genai_model,
            timeout=settings.genai_timeout_secs,
        )

    def _post(self, body: dict) -> dict:
        req = Request(
            GENAI_ENDPOINT.format(model=self.model),
            data=json.dumps(body).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "x-goog-api-key": self.api_key,
            },
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise TextGenerationError(
                f"Failed to call text generation model {self.model}"
            ) from exc

    async def generate(
        self, prompt: str, *, system_instruction: str, temperature: float
    ) -> Optional[str]:
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "generationConfig": {"temperature": temperature},
        }
        payload = await asyncio.to_thread(self._post, body)
        try:
            candidates = payload.get("candidates") or []
            if not candidates:
                return None
            parts = candidates[0].get("content", {}).get("parts") or []
        except AttributeError as exc:
            raise TextGenerationError("Unexpected text generation response") from exc
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        return text or None


async def generate_financial_insights(
    transactions: Iterable[Transaction],
    generator: Optional[TextGenerator],
    *,
    currency_code: str = "INR",
    currency_symbol: str = "₹",
    temperature: float = 0.7,
) -> str:
    """
    Ask the text model for an advisory summary of the newest transactions.

    Never raises: failures come back as a user-facing message.
    """
    prompt = build_prompt(transactions, currency_code, currency_symbol)
    if generator is None:
        logger.error("Error generating insights: no text generator configured")
        return SERVICE_ERROR_TEXT
    try:
        text = await generator.generate(
            prompt, system_instruction=SYSTEM_INSTRUCTION, temperature=temperature
        )
    except Exception:
        logger.exception("Error generating insights")
        return SERVICE_ERROR_TEXT
    return text or EMPTY_REPLY_TEXT
