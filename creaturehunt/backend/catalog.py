"""Catalog source over the public HTTP API and the cache-aside repository."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .cache import DETAIL_PREFIX, LIST_KEY, CatalogCache, detail_key
from .config import DEFAULT_ARTWORK_URL, DEFAULT_CATALOG_URL
from .errors import NetworkError, NotFoundError
from .models import BaseMetric, CatalogDetail, CatalogSummary

logger = logging.getLogger(__name__)


class CatalogSource(Protocol):
    async def list_catalog(self) -> list[CatalogSummary]:
        """Return the catalog summaries; raises NetworkError."""

    async def fetch_detail(self, identity: int) -> CatalogDetail:
        """Return one combined detail record; raises NetworkError or NotFoundError."""


def identity_from_ref(resource_ref: str) -> int:
    """Parse the trailing numeric segment of a resource URL."""
    return int(resource_ref.rstrip("/").rsplit("/", 1)[-1])


def artwork_ref(identity: int, template: str = DEFAULT_ARTWORK_URL) -> str:
    return template.format(identity=identity)


class HttpCatalogSource:
    def __init__(
        self,
        base_url: str = DEFAULT_CATALOG_URL,
        limit: int = 151,
        timeout: float = 10.0,
        artwork_url: str = DEFAULT_ARTWORK_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.limit = limit
        self.artwork_url = artwork_url
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise NetworkError(f"GET {url} failed: {exc}") from exc
        if response.status_code == 404:
            raise NotFoundError(f"GET {url} returned 404")
        if response.is_error:
            raise NetworkError(f"GET {url} returned {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(f"GET {url} returned invalid JSON") from exc

    async def list_catalog(self) -> list[CatalogSummary]:
        payload = await self._get_json(f"{self.base_url}/pokemon", params={"limit": self.limit, "offset": 0})
        try:
            return [
                CatalogSummary(
                    identity=identity_from_ref(entry["url"]),
                    display_name=entry["name"],
                    resource_ref=entry["url"],
                )
                for entry in payload["results"]
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkError(f"Malformed catalog listing: {exc}") from exc

    async def fetch_detail(self, identity: int) -> CatalogDetail:
        primary = await self._get_json(f"{self.base_url}/pokemon/{identity}")
        try:
            species_url = primary["species"]["url"]
        except (KeyError, TypeError) as exc:
            raise NetworkError(f"Detail for {identity} has no species reference") from exc
        # both halves must succeed before a record exists at all
        species = await self._get_json(species_url)
        try:
            return self._combine(primary, species)
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkError(f"Malformed detail for {identity}: {exc}") from exc

    def _combine(self, primary: dict[str, Any], species: dict[str, Any]) -> CatalogDetail:
        identity = int(primary["id"])
        sprites = primary.get("sprites") or {}
        evolution = species.get("evolution_chain") or {}
        return CatalogDetail(
            identity=identity,
            display_name=primary["name"],
            category_tags=tuple(entry["type"]["name"] for entry in primary["types"]),
            trait_tags=tuple(entry["ability"]["name"] for entry in primary["abilities"]),
            base_metrics=tuple(
                BaseMetric(name=entry["stat"]["name"], value=int(entry["base_stat"])) for entry in primary["stats"]
            ),
            image_ref=sprites.get("front_default") or artwork_ref(identity, self.artwork_url),
            mass_units=primary["weight"],
            size_units=primary["height"],
            narrative_text=_english_flavor_text(species),
            evolution_ref=evolution.get("url"),
        )


def _english_flavor_text(species: dict[str, Any]) -> str | None:
    for entry in species.get("flavor_text_entries", []):
        if entry.get("language", {}).get("name") == "en":
            return " ".join(entry["flavor_text"].split())
    return None


@dataclass(frozen=True)
class CatalogListing:
    summaries: tuple[CatalogSummary, ...]
    source: str
    error: NetworkError | None = None


class CatalogRepository:
    """Cache-aside retrieval of the summary list and per-identity details."""

    def __init__(self, cache: CatalogCache, source: CatalogSource, background_refresh: bool = False) -> None:
        self.cache = cache
        self.source = source
        self.background_refresh = background_refresh
        self._refresh_tasks: set[asyncio.Task[None]] = set()

    async def get_summary_list(self) -> CatalogListing:
        cached = await self._read_list()
        if cached is not None:
            logger.debug("Returning %d summaries from cache", len(cached))
            if self.background_refresh:
                self._schedule_refresh()
            return CatalogListing(summaries=cached, source="cache")

        try:
            fresh = await self._fetch_and_store_list()
        except NetworkError as exc:
            logger.warning("Catalog list unavailable and nothing cached: %s", exc)
            return CatalogListing(summaries=(), source="none", error=exc)
        return CatalogListing(summaries=fresh, source="remote")

    async def refresh_summary_list(self) -> CatalogListing:
        """Fetch the list remotely, falling back to the cached copy on failure."""
        try:
            fresh = await self._fetch_and_store_list()
        except NetworkError as exc:
            cached = await self._read_list()
            if cached is None:
                return CatalogListing(summaries=(), source="none", error=exc)
            logger.warning("Catalog refresh failed, serving cached list: %s", exc)
            return CatalogListing(summaries=cached, source="cache", error=exc)
        return CatalogListing(summaries=fresh, source="remote")

    async def get_detail(self, identity: int) -> CatalogDetail:
        key = detail_key(identity)
        raw = await self.cache.get(key)
        if raw is not None:
            try:
                return CatalogDetail.from_dict(json.loads(raw))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Discarding undecodable detail cache: %s", exc)
                await self.cache.clear_namespace(DETAIL_PREFIX)

        detail = await self.source.fetch_detail(identity)
        logger.info("Fetched detail for %s from catalog source", identity)
        await self.cache.set(key, json.dumps(detail.to_dict()))
        return detail

    async def aclose(self) -> None:
        if self._refresh_tasks:
            await asyncio.gather(*self._refresh_tasks, return_exceptions=True)

    async def _read_list(self) -> tuple[CatalogSummary, ...] | None:
        raw = await self.cache.get(LIST_KEY)
        if raw is None:
            return None
        try:
            return tuple(CatalogSummary.from_dict(entry) for entry in json.loads(raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding undecodable list cache: %s", exc)
            await self.cache.clear_namespace(LIST_KEY)
            return None

    async def _fetch_and_store_list(self) -> tuple[CatalogSummary, ...]:
        fresh = tuple(await self.source.list_catalog())
        await self.cache.set(LIST_KEY, json.dumps([summary.to_dict() for summary in fresh]))
        logger.info("Fetched and cached %d summaries", len(fresh))
        return fresh

    def _schedule_refresh(self) -> None:
        task = asyncio.create_task(self._refresh_in_background())
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _refresh_in_background(self) -> None:
        try:
            await self._fetch_and_store_list()
        except NetworkError as exc:
            logger.warning("Background catalog refresh failed: %s", exc)
