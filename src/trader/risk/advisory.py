"""External advisory filter for generated signals.

A language model is asked whether a signal should be executed and returns a
JSON judgment {"execute", "confidence", "reason"}. Reachability problems do
not raise: they produce an AdvisoryDecision with available=False, and the
RiskGate applies the configured AdvisoryPolicy to it.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

import httpx

from trader.config import AdvisorySettings
from trader.logging import get_logger
from trader.signals.models import Signal
from trader.strategy import IndicatorParams

logger = get_logger(__name__)


class AdvisoryPolicy(str, Enum):
    """What to do with a signal when the advisory filter cannot be reached."""

    FAIL_OPEN = "fail_open"  # execute on the engine decision alone
    FAIL_CLOSED = "fail_closed"  # filter the signal


@dataclass(frozen=True)
class AdvisoryDecision:
    available: bool
    execute: bool = False
    confidence: Decimal = Decimal("0")
    reason: str = ""
    raw: str | None = None
    provider: str = "gemini"

    @classmethod
    def unavailable(cls, reason: str, raw: str | None = None) -> AdvisoryDecision:
        return cls(available=False, reason=reason, raw=raw)

    def summary(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "execute": self.execute,
            "confidence": str(self.confidence),
            "reason": self.reason,
        }


class SignalAdvisor(ABC):
    """Reviews a signal before execution."""

    @abstractmethod
    async def review(self, signal: Signal, params: IndicatorParams) -> AdvisoryDecision:
        ...


def extract_json(text: str) -> str | None:
    """Return the substring between the first "{" and the last "}", if any."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def build_prompt(signal: Signal, params: IndicatorParams) -> str:
    indicators = {
        "ema_trend": signal.indicators.ema_trend.value,
        "rsi_signal": signal.indicators.rsi_signal.value,
        "macd_signal": signal.indicators.macd_signal.value,
        "volume_confirmed": signal.indicators.volume_confirmed,
    }
    return "\n".join(
        [
            "You are a trading signal filter.",
            "Return JSON only in the format: "
            '{"execute":true|false,"confidence":0-1,"reason":"..."}',
            "Use 0-1 confidence where 0.8-1.0 means high confidence.",
            f"Action: {signal.action.value}",
            f"Symbol: {signal.symbol}",
            f"Price: {signal.price}",
            f"Engine confidence: {signal.confidence}",
            f"RSI: {signal.rsi_value}",
            f"Indicators: {json.dumps(indicators)}",
            f"Config: {json.dumps(params.as_dict())}",
            "If the signal looks weak or conflicting, set execute=false.",
        ]
    )


def _confidence(value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return Decimal("0")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")
    return result if result.is_finite() else Decimal("0")


class GeminiAdvisor(SignalAdvisor):
    """SignalAdvisor backed by the Gemini generateContent REST endpoint.

    Args:
        settings: Advisory settings (model, key, timeout).
        http_client: Shared async HTTP client.
    """

    def __init__(self, settings: AdvisorySettings, http_client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http_client

    async def review(self, signal: Signal, params: IndicatorParams) -> AdvisoryDecision:
        api_key = self._settings.api_key.get_secret_value()
        if not api_key:
            return AdvisoryDecision.unavailable("missing_gemini_api_key")

        url = f"{self._settings.base_url}/models/{self._settings.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": build_prompt(signal, params)}]}],
            "generationConfig": {"temperature": 0.2, "maxOutputTokens": 200},
        }
        try:
            response = await self._http.post(
                url,
                params={"key": api_key},
                json=body,
                timeout=self._settings.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning("advisory_request_failed", symbol=signal.symbol, error=str(e))
            return AdvisoryDecision.unavailable(str(e) or type(e).__name__)

        if response.status_code >= 400:
            return AdvisoryDecision.unavailable(f"gemini_http_{response.status_code}")

        try:
            data = response.json()
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts).strip()
        except (ValueError, KeyError, IndexError, TypeError, AttributeError):
            text = ""

        json_text = extract_json(text)
        if json_text is None:
            return AdvisoryDecision.unavailable("gemini_invalid_json", raw=text)
        try:
            parsed = json.loads(json_text)
        except json.JSONDecodeError:
            return AdvisoryDecision.unavailable("gemini_invalid_json", raw=text)
        if not isinstance(parsed, dict):
            return AdvisoryDecision.unavailable("gemini_invalid_json", raw=text)

        decision = AdvisoryDecision(
            available=True,
            execute=bool(parsed.get("execute")),
            confidence=_confidence(parsed.get("confidence")),
            reason=str(parsed.get("reason") or "gemini_filter"),
            raw=json_text,
        )
        logger.info(
            "advisory_reviewed",
            symbol=signal.symbol,
            execute=decision.execute,
            confidence=str(decision.confidence),
            reason=decision.reason,
        )
        return decision
