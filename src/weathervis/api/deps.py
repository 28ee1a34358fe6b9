from __future__ import annotations

from fastapi import Request

from ..infrastructure.log_store import LogStore
from ..services.generation_client import GenerationClient
from ..services.weather_api import WeatherAPIClient


# Collaborators are built once in create_app and shared by every request.
def get_log_store(request: Request) -> LogStore:
    return request.app.state.log_store


def get_generation_client(request: Request) -> GenerationClient:
    return request.app.state.generation_client


def get_weather_client(request: Request) -> WeatherAPIClient:
    return request.app.state.weather_client
