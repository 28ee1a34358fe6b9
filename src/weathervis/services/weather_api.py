from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..domain.weather_models import CurrentConditions, CurrentExtras, DailySeries, ForecastView, HourlySeries
from .tips import make_suggestion, text_to_code

LOG = logging.getLogger("weathervis.weather")

DEFAULT_BASE_URL = "http://api.weatherapi.com/v1"
DEFAULT_CITY = "Rome"
_TIMEOUT = (
    float(os.getenv("WEATHER_API_CONNECT_TIMEOUT", "3")),
    float(os.getenv("WEATHER_API_TIMEOUT", "10")),
)


class WeatherAPIError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def location_query(city: Optional[str] = None, lat: Optional[float] = None, lon: Optional[float] = None) -> str:
    """WeatherAPI ``q`` parameter: coordinates win over a city name."""
    if lat is not None and lon is not None:
        return f"{lat},{lon}"
    if city and city.strip():
        return city.strip()
    return DEFAULT_CITY


class WeatherAPIClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("WEATHER_API_KEY", "")
        self.base_url = (base_url or os.getenv("WEATHER_API_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self._session = session or _build_session()

    def _get(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise WeatherAPIError("WEATHER_API_KEY is not configured")
        query = {"key": self.api_key, **params}
        try:
            resp = self._session.get(f"{self.base_url}/{endpoint}", params=query, timeout=_TIMEOUT)
        except requests.exceptions.RequestException as exc:
            LOG.warning("weather_request_failed", extra={"endpoint": endpoint, "err": str(exc)})
            raise WeatherAPIError(f"weather request failed: {exc}") from exc
        if resp.status_code >= 400:
            LOG.warning("weather_request_rejected", extra={"endpoint": endpoint, "status": resp.status_code})
            raise WeatherAPIError(f"weather API returned HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as exc:
            raise WeatherAPIError("weather API returned invalid JSON") from exc

    def current(self, city: Optional[str] = None, lat: Optional[float] = None, lon: Optional[float] = None) -> Dict[str, Any]:
        return self._get("current.json", {"q": location_query(city, lat, lon)})

    def forecast(
        self,
        city: Optional[str] = None,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        days: int = 3,
    ) -> Dict[str, Any]:
        return self._get("forecast.json", {"q": location_query(city, lat, lon), "days": days})


def reshape_forecast(payload: Dict[str, Any], lat: Optional[float] = None, lon: Optional[float] = None) -> ForecastView:
    """Flatten a WeatherAPI forecast payload into the series the UI renders."""

    location = payload.get("location") or {}
    current = payload.get("current") or {}
    days: List[Dict[str, Any]] = (payload.get("forecast") or {}).get("forecastday") or []
    hours: List[Dict[str, Any]] = (days[0].get("hour") or []) if days else []

    def cond(entry: Dict[str, Any]) -> Optional[str]:
        return (entry.get("condition") or {}).get("text")

    label = ", ".join(part for part in (location.get("name"), location.get("region")) if part)
    now = CurrentConditions(
        temperature_2m=current.get("temp_c"),
        uv_index=current.get("uv"),
        weather_code=text_to_code(cond(current)),
        condition=cond(current),
    )
    return ForecastView(
        label=label,
        lat=location.get("lat", lat),
        lon=location.get("lon", lon),
        current=now,
        extras=CurrentExtras(
            humidity=current.get("humidity"),
            wind_kph=current.get("wind_kph"),
            pressure_mb=current.get("pressure_mb"),
            vis_km=current.get("vis_km"),
            dewpoint_c=current.get("dewpoint_c"),
            feelslike_c=current.get("feelslike_c"),
        ),
        hourly=HourlySeries(
            time=[h.get("time") for h in hours],
            temperature_2m=[h.get("temp_c") for h in hours],
            weather_code=[text_to_code(cond(h)) for h in hours],
            uv_index=[h.get("uv") or 0 for h in hours],
        ),
        daily=DailySeries(
            temperature_2m_max=[(d.get("day") or {}).get("maxtemp_c") for d in days],
            temperature_2m_min=[(d.get("day") or {}).get("mintemp_c") for d in days],
            uv_index_max=[(d.get("day") or {}).get("uv") or 0 for d in days],
            weather_code=[text_to_code(cond(d.get("day") or {})) for d in days],
        ),
        suggestion=make_suggestion(now.temperature_2m, now.uv_index, now.weather_code),
    )
