"""AI intent providers: one call per tick, returning an AIIntent."""

from __future__ import annotations

import hashlib
import json
from typing import Protocol

import structlog
from anthropic import AsyncAnthropic
from pydantic import BaseModel, ValidationError
from tenacity import retry, stop_after_attempt, wait_exponential

from strategy_runner.config import Settings
from strategy_runner.models.account import AccountSnapshot, PositionSnapshot
from strategy_runner.models.intent import AIIntent
from strategy_runner.models.market import MarketSnapshot

logger = structlog.get_logger()

INTENT_SYSTEM_PROMPT = """You are a crypto trading agent operating one strategy.
Read the strategy instructions and the market state, then give your directional call.
bias is one of: long, short, neutral, hold, close.
Use "close" only to exit an open position. Default to "hold" if uncertain.
Respond ONLY with JSON:
{"bias": "...", "confidence": 0.0-1.0, "entry_zone": {"lower": n, "upper": n} | null,
 "stop_loss": n | null, "take_profit": n | null, "risk": n | null, "reasoning": "..."}"""


class IntentRequest(BaseModel):
    session_id: str
    market: str
    prompt: str
    model_name: str = ""
    market_snapshot: MarketSnapshot
    position: PositionSnapshot | None = None
    account: AccountSnapshot


class IntentProvider(Protocol):
    async def get_intent(self, request: IntentRequest) -> AIIntent: ...


class StubIntentProvider:
    """Deterministic intent derived from a hash of the prompt, market and minute bucket."""

    BIASES = ("long", "short", "neutral")

    async def get_intent(self, request: IntentRequest) -> AIIntent:
        bucket = int(request.market_snapshot.timestamp.timestamp()) // 60
        digest = hashlib.sha256(f"{request.prompt}|{request.market}|{bucket}".encode()).digest()
        seed = int.from_bytes(digest[:4], "big")
        bias = self.BIASES[seed % 3]
        confidence = 0.5 + (digest[4] / 255) * 0.5
        price = request.market_snapshot.price
        direction = 1 if bias == "long" else -1
        return AIIntent(
            bias=bias,
            confidence=round(confidence, 4),
            stop_loss=round(price * (1 - direction * 0.02), 2) if bias != "neutral" else None,
            take_profit=round(price * (1 + direction * 0.04), 2) if bias != "neutral" else None,
            risk=0.02,
            reasoning=f"Stub intent for {request.market}",
        )


class ModelIntentProvider:
    """Anthropic-backed provider. Any failure degrades to a hold intent."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def get_intent(self, request: IntentRequest) -> AIIntent:
        try:
            response = await self._call_api(self._build_prompt(request), request.model_name)
            text = response.content[0].text
        except Exception as e:
            logger.warning("intent_call_error", session_id=request.session_id, error=str(e))
            return AIIntent(bias="hold", confidence=0.0, reasoning=f"Intent provider error: {e}")

        intent = self._parse_response(text)
        logger.info(
            "intent_received",
            session_id=request.session_id,
            bias=intent.bias,
            confidence=intent.confidence,
        )
        return intent

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=10), reraise=True)
    async def _call_api(self, prompt: str, model_name: str = ""):
        client = AsyncAnthropic(api_key=self.settings.ANTHROPIC_API_KEY)
        return await client.messages.create(
            model=model_name or self.settings.INTENT_MODEL,
            max_tokens=self.settings.INTENT_MAX_TOKENS,
            system=INTENT_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
            timeout=self.settings.INTENT_TIMEOUT_SECONDS,
        )

    def _build_prompt(self, request: IntentRequest) -> str:
        snap = request.market_snapshot
        parts = [
            "## Strategy",
            request.prompt or "(no instructions)",
            "",
            "## Market",
            f"Market: {snap.market}",
            f"Price: {snap.price}",
            f"Bid/Ask: {snap.bid} / {snap.ask}",
            f"Time: {snap.timestamp.isoformat()}",
            "",
            "## Account",
            f"Equity: {request.account.equity:.2f} (start {request.account.starting_equity:.2f})",
        ]
        if request.position is not None:
            p = request.position
            parts.append(f"Open position: {p.side} {p.size} @ {p.avg_entry} (uPnL {p.unrealized_pnl:.2f})")
        else:
            parts.append("Open position: none")
        return "\n".join(parts)

    def _parse_response(self, text: str) -> AIIntent:
        """Parse the JSON intent. Default hold on failure."""
        for candidate in (text, _extract_json(text)):
            if not candidate:
                continue
            try:
                return AIIntent.model_validate(json.loads(candidate))
            except (json.JSONDecodeError, ValidationError, TypeError):
                continue
        logger.warning("intent_parse_error", raw_text=text[:200])
        return AIIntent(bias="hold", confidence=0.0, reasoning="Parse error: malformed intent")


def _extract_json(text: str) -> str | None:
    try:
        start = text.index("{")
        end = text.rindex("}") + 1
    except ValueError:
        return None
    return text[start:end]
