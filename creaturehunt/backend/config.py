"""Configuration helpers for backend runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_CATALOG_URL = "https://pokeapi.co/api/v2"
DEFAULT_ARTWORK_URL = (
    "https://raw.githubusercontent.com/PokeAPI/sprites/master/sprites/pokemon/other/official-artwork/{identity}.png"
)


@dataclass(frozen=True)
class CreatureHuntSettings:
    database_url: str | None
    cache_path: str | None
    catalog_url: str
    catalog_limit: int
    artwork_url: str
    flee_seconds: float
    http_timeout: float
    host: str
    port: int
    log_level: str


def load_settings() -> CreatureHuntSettings:
    return CreatureHuntSettings(
        database_url=os.getenv("CREATUREHUNT_DATABASE_URL"),
        cache_path=os.getenv("CREATUREHUNT_CACHE_PATH"),
        catalog_url=os.getenv("CREATUREHUNT_CATALOG_URL", DEFAULT_CATALOG_URL).rstrip("/"),
        catalog_limit=int(os.getenv("CREATUREHUNT_CATALOG_LIMIT", "151")),
        artwork_url=os.getenv("CREATUREHUNT_ARTWORK_URL", DEFAULT_ARTWORK_URL),
        flee_seconds=float(os.getenv("CREATUREHUNT_FLEE_SECONDS", "10")),
        http_timeout=float(os.getenv("CREATUREHUNT_HTTP_TIMEOUT", "10")),
        host=os.getenv("CREATUREHUNT_HOST", "127.0.0.1"),
        port=int(os.getenv("CREATUREHUNT_PORT", "8000")),
        log_level=os.getenv("CREATUREHUNT_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
