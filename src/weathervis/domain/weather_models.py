from __future__ import annotations

from typing import List, Optional
from pydantic import BaseModel, Field


class CurrentConditions(BaseModel):
    temperature_2m: Optional[float] = None
    uv_index: Optional[float] = None
    weather_code: int = 1
    condition: Optional[str] = None


class CurrentExtras(BaseModel):
    humidity: Optional[float] = None
    wind_kph: Optional[float] = None
    pressure_mb: Optional[float] = None
    vis_km: Optional[float] = None
    dewpoint_c: Optional[float] = None
    feelslike_c: Optional[float] = None


class HourlySeries(BaseModel):
    time: List[Optional[str]] = Field(default_factory=list)
    temperature_2m: List[Optional[float]] = Field(default_factory=list)
    weather_code: List[int] = Field(default_factory=list)
    uv_index: List[float] = Field(default_factory=list)


class DailySeries(BaseModel):
    temperature_2m_max: List[Optional[float]] = Field(default_factory=list)
    temperature_2m_min: List[Optional[float]] = Field(default_factory=list)
    uv_index_max: List[float] = Field(default_factory=list)
    weather_code: List[int] = Field(default_factory=list)


class ForecastView(BaseModel):
    label: str = ""
    lat: Optional[float] = None
    lon: Optional[float] = None
    current: CurrentConditions
    extras: CurrentExtras
    hourly: HourlySeries
    daily: DailySeries
    suggestion: str = ""
