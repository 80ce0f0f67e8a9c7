# src/main.py
import asyncio
import contextlib
import logging
import random
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import APIRouter, FastAPI, HTTPException, Request, WebSocket, status
from starlette.websockets import WebSocketDisconnect

from formatting import change_label, format_macd, format_price, percent_change
from indicators import determine_trend, drift_timeframes
from models import (
    CHART_TIMEFRAMES,
    ApiKeyRequest,
    DashboardState,
    HistoryResponse,
    IndicatorsResponse,
    RateResponse,
    RateSample,
    TimeframeCard,
    TimeframeIndicators,
)
from price_generator import SyntheticPriceGenerator
from rate_cache import build_cache
from rate_fetcher import RateLimitedFetcher, rate_stream
from settings import (
    ConfigurationError,
    Settings,
    check_provider_key,
    load_settings,
    persist_api_key,
    safe_summary,
)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)


def apply_sample(app: FastAPI, sample: RateSample) -> None:
    """Push one sample into the dashboard and advance the indicator cards."""
    state = app.state
    state.dashboard.apply(sample)
    drift_timeframes(state.dashboard.timeframes, state.rng)


# --- 1) REFRESH TASK (Runs in the background) ---

async def rate_consumer_task(app: FastAPI) -> None:
    fetcher: RateLimitedFetcher = app.state.fetcher
    interval = app.state.settings.refresh_interval
    logger.info("Starting EUR/USD refresh loop every %ss", interval)
    try:
        async for sample in rate_stream(fetcher, interval):
            try:
                apply_sample(app, sample)
            except Exception:
                logger.exception("Could not apply rate sample %s", sample)
    except asyncio.CancelledError:
        logger.info("Rate refresh task cancelled.")


def build_app_state(app: FastAPI, settings: Settings, http_client: Optional[httpx.AsyncClient]) -> None:
    rng = random.Random()
    generator = SyntheticPriceGenerator(settings, rng=rng)
    app.state.settings = settings
    app.state.rng = rng
    app.state.fetcher = RateLimitedFetcher(settings, build_cache(settings), generator, client=http_client)
    app.state.dashboard = DashboardState(initial_price=settings.base_price, history_size=settings.history_size)
    app.state.started_at = time.monotonic()


def create_app(settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """Build the service. Without explicit settings they are loaded at startup;
    either way a production deployment without an API key refuses to start."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings is None:
            active = load_settings()
        else:
            check_provider_key(settings)
            active = settings
        configure_logging(active.log_level)
        logger.info("Configuration loaded: %s", safe_summary(active))
        build_app_state(app, active, http_client)
        app.state.consumer_task = asyncio.create_task(rate_consumer_task(app))
        try:
            yield
        finally:
            app.state.consumer_task.cancel()
            try:
                # A task cancelled before its first step never reaches its own handler.
                with contextlib.suppress(asyncio.CancelledError):
                    await app.state.consumer_task
            finally:
                await app.state.fetcher.aclose()

    app = FastAPI(title="EUR/USD Rate Feed", lifespan=lifespan)
    app.include_router(router)
    return app


router = APIRouter()


def _rate_response(dashboard: DashboardState) -> RateResponse:
    price = dashboard.current_price
    change = dashboard.price_change
    return RateResponse(
        price=price,
        change=change,
        price_text=format_price(price),
        change_text=change_label(change, price),
        change_percent=percent_change(price, price - change),
        direction="positive" if change >= 0 else "negative",
        data_source=dashboard.data_source,
        observed_at=dashboard.observed_at,
        last_update=dashboard.last_update,
    )


def _card(frame: TimeframeIndicators) -> TimeframeCard:
    return TimeframeCard(
        timeframe=frame.timeframe,
        rsi=frame.rsi,
        macd=frame.macd,
        rsi_text=f"{frame.rsi:.1f}",
        macd_text=format_macd(frame.macd),
        trend=frame.trend,
    )


# --- 2) REST Endpoints ---

@router.get("/rate", response_model=RateResponse, tags=["Rate"])
async def get_rate(request: Request):
    """Current EUR/USD price with the label of the source that produced it."""
    return _rate_response(request.app.state.dashboard)


@router.post("/refresh", response_model=RateResponse, tags=["Rate"])
async def refresh_rate(request: Request):
    sample = await request.app.state.fetcher.get_current_rate()
    apply_sample(request.app, sample)
    return _rate_response(request.app.state.dashboard)


@router.get("/history", response_model=HistoryResponse, tags=["Chart"])
async def get_history(request: Request):
    dashboard: DashboardState = request.app.state.dashboard
    points = list(dashboard.history)
    return HistoryResponse(
        timeframe=dashboard.chart_timeframe,
        labels=[p.time.strftime("%H:%M") for p in points],
        prices=[p.price for p in points],
    )


@router.put("/timeframe/{timeframe}", response_model=HistoryResponse, tags=["Chart"])
async def change_timeframe(timeframe: str, request: Request):
    tf = timeframe.upper()
    if tf not in CHART_TIMEFRAMES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Timeframe {timeframe} not supported.")
    request.app.state.dashboard.chart_timeframe = tf
    logger.info("Switched to %s timeframe", tf)
    return await get_history(request)


@router.get("/indicators", response_model=IndicatorsResponse, tags=["Indicators"])
async def get_indicators(request: Request):
    dashboard: DashboardState = request.app.state.dashboard
    trend, rsi = determine_trend(dashboard.prices)
    return IndicatorsResponse(
        trend=trend,
        rsi=rsi,
        timeframes=[_card(frame) for frame in dashboard.timeframes.values()],
    )


@router.get("/indicators/{timeframe}", response_model=TimeframeCard, tags=["Indicators"])
async def get_timeframe_indicators(timeframe: str, request: Request):
    frame = request.app.state.dashboard.timeframes.get(timeframe.lower())
    if frame is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Timeframe {timeframe} not tracked.")
    return _card(frame)


@router.put("/config/api-key", tags=["Config"])
async def update_api_key(body: ApiKeyRequest, request: Request):
    try:
        updated = persist_api_key(request.app.state.settings, body.api_key)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    request.app.state.settings = updated
    request.app.state.fetcher.update_settings(updated)
    return safe_summary(updated)


@router.get("/health", tags=["Health"])
async def health(request: Request):
    state = request.app.state
    budget = state.fetcher.budget
    cached = await asyncio.to_thread(state.fetcher.cache.read)
    return {
        "status": "ok",
        "uptime_s": round(time.monotonic() - state.started_at, 3),
        "config": safe_summary(state.settings),
        "fetch_budget": {
            "count": budget.count,
            "window_start": budget.window_start,
            "last_request_at": budget.last_request_at,
            "remote_enabled": state.fetcher.remote_enabled,
        },
        "cache": {"present": cached is not None, "timestamp": cached.timestamp if cached else None},
        "data_source": state.dashboard.data_source,
        "updates": state.dashboard.updates,
    }


# --- 3) WS /ws/rate Endpoint ---

def _rate_message(dashboard: DashboardState) -> dict:
    return {
        "pair": "EUR/USD",
        "price": dashboard.current_price,
        "change": dashboard.price_change,
        "data_source": dashboard.data_source,
        "updates": dashboard.updates,
    }


@router.websocket("/ws/rate")
async def websocket_rate(websocket: WebSocket):
    """Snapshot on connect, then one message per dashboard update."""
    await websocket.accept()
    dashboard: DashboardState = websocket.app.state.dashboard
    try:
        last_seen = dashboard.updates
        await websocket.send_json(_rate_message(dashboard))
        while True:
            if dashboard.updates != last_seen:
                last_seen = dashboard.updates
                await websocket.send_json(_rate_message(dashboard))
            await asyncio.sleep(0.1)
    except WebSocketDisconnect:
        logger.info("Client disconnected from rate WebSocket.")


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="127.0.0.1", port=8001)
