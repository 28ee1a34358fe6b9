from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from starlette.concurrency import run_in_threadpool

from ...domain.weather_models import ForecastView
from ...infrastructure.log_store import FORECAST_LOGS, WEATHER_LOGS, LogStore
from ...services.detached import spawn_detached
from ...services.weather_api import WeatherAPIClient, WeatherAPIError, reshape_forecast
from ..deps import get_log_store, get_weather_client

LOG = logging.getLogger("weathervis.weather")

router = APIRouter(tags=["weather"])


def _summary(payload: Dict[str, Any]) -> Dict[str, Any]:
    location = payload.get("location") or {}
    current = payload.get("current") or {}
    return {
        "name": location.get("name"),
        "region": location.get("region"),
        "temp_c": current.get("temp_c"),
        "condition": (current.get("condition") or {}).get("text"),
    }


def _log_request(
    log_store: LogStore,
    collection: str,
    started: float,
    request: Dict[str, Any],
    *,
    response: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
) -> None:
    record: Dict[str, Any] = {
        "createdAt": datetime.now(UTC),
        "latency_ms": int((time.perf_counter() - started) * 1000),
        "request": request,
    }
    if error is not None:
        record["error"] = error
    else:
        record["response"] = response
    spawn_detached(log_store.insert(collection, record), name=f"{collection}_log")


@router.get("/weather")
async def get_weather(
    city: Optional[str] = Query(None),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
    days: int = Query(3, ge=1, le=10),
    client: WeatherAPIClient = Depends(get_weather_client),
    log_store: LogStore = Depends(get_log_store),
) -> Dict[str, Any]:
    """Pass-through of the WeatherAPI forecast payload (current + ``days`` days)."""
    started = time.perf_counter()
    request = {"city": city, "lat": lat, "lon": lon}
    try:
        payload = await run_in_threadpool(client.forecast, city, lat, lon, days)
    except WeatherAPIError as exc:
        LOG.error("weather_fetch_failed", extra={"city": city, "err": str(exc)})
        _log_request(log_store, WEATHER_LOGS, started, request, error=str(exc))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Error fetching weather data") from exc
    _log_request(log_store, WEATHER_LOGS, started, request, response=_summary(payload))
    return payload


@router.get("/forecast", response_model=ForecastView)
async def get_forecast(
    city: Optional[str] = Query(None),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
    days: int = Query(3, ge=1, le=10),
    client: WeatherAPIClient = Depends(get_weather_client),
    log_store: LogStore = Depends(get_log_store),
) -> ForecastView:
    started = time.perf_counter()
    request = {"city": city, "lat": lat, "lon": lon}
    try:
        payload = await run_in_threadpool(client.forecast, city, lat, lon, days)
    except WeatherAPIError as exc:
        LOG.error("forecast_fetch_failed", extra={"city": city, "err": str(exc)})
        _log_request(log_store, FORECAST_LOGS, started, request, error=str(exc))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Error fetching forecast data") from exc
    view = reshape_forecast(payload, lat=lat, lon=lon)
    _log_request(log_store, FORECAST_LOGS, started, request, response={"label": view.label, "days": len(view.daily.weather_code)})
    return view
