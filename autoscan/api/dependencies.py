"""API dependencies: access to the TradingCore owned by the application."""

from __future__ import annotations

from fastapi import Request

from autoscan.database import Database
from autoscan.services.trading_core import TradingCore


def get_core(request: Request) -> TradingCore:
    """The TradingCore created by the application lifespan."""
    return request.app.state.core


def get_db(request: Request) -> Database:
    return get_core(request).db


__all__ = ["get_core", "get_db"]
