"""Alert webhook, tick triggers and health endpoints."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from trader.models import WebhookStatus, utc_now
from trader.orchestrator import Alert, AlertAction, TriggerOrchestrator

log = structlog.get_logger(__name__)

router = APIRouter()


class AlertPayload(BaseModel):
    """Inbound alert body. sl and tp1..tp3 are absolute trigger prices."""

    model_config = ConfigDict(extra="ignore")

    action: AlertAction
    symbol: str = Field(min_length=1)
    price: Decimal | None = Field(default=None, gt=0)
    quantity: Decimal | None = Field(default=None, gt=0)
    leverage: int | None = Field(default=None, ge=1)
    sl: Decimal | None = Field(default=None, gt=0)
    tp1: Decimal | None = Field(default=None, gt=0)
    tp2: Decimal | None = Field(default=None, gt=0)
    tp3: Decimal | None = Field(default=None, gt=0)
    strategy_id: str | None = None
    secret: str | None = None

    @field_validator("action", mode="before")
    @classmethod
    def _lower_action(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return value.strip().upper()

    @model_validator(mode="after")
    def _requires_strategy_reference(self) -> AlertPayload:
        if not self.strategy_id and not self.secret:
            raise ValueError("Either strategy_id or secret is required")
        return self

    def to_alert(self) -> Alert:
        take_profits = {
            level: price
            for level, price in ((1, self.tp1), (2, self.tp2), (3, self.tp3))
            if price is not None
        }
        return Alert(
            action=self.action,
            symbol=self.symbol,
            price=self.price,
            quantity=self.quantity,
            leverage=self.leverage,
            stop_loss=self.sl,
            take_profits=take_profits,
            strategy_id=self.strategy_id,
            secret=self.secret,
            payload=self.model_dump(mode="json", exclude_none=True, exclude={"secret"}),
        )


def _orchestrator(request: Request) -> TriggerOrchestrator:
    return request.app.state.orchestrator


async def _handle(request: Request, payload: AlertPayload) -> JSONResponse:
    result = await _orchestrator(request).handle_alert(payload.to_alert())
    status_code = 500 if result.status is WebhookStatus.FAILED else 200
    return JSONResponse(result.to_response(), status_code=status_code)


@router.post("/tradingview-webhook")
async def tradingview_webhook(request: Request, payload: AlertPayload) -> JSONResponse:
    """Execute an alert addressed by strategy_id or secret in the body."""
    return await _handle(request, payload)


@router.post("/webhook/tradingview/{secret}")
async def tradingview_webhook_by_secret(
    request: Request, secret: str, payload: dict[str, Any]
) -> JSONResponse:
    """Execute an alert whose strategy is identified by the path secret."""
    # Validated here so a body without strategy_id still passes
    alert = AlertPayload.model_validate({**payload, "secret": secret})
    return await _handle(request, alert)


@router.post("/auto-signal-generator")
async def auto_signal_generator(request: Request) -> dict[str, Any]:
    """Run one signal tick."""
    return await _orchestrator(request).run_signal_tick()


@router.post("/position-monitor")
async def position_monitor(request: Request) -> dict[str, Any]:
    """Run one reconciliation tick."""
    return await _orchestrator(request).run_position_tick()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "timestamp": utc_now().isoformat()}
