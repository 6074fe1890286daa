"""Persistence interfaces and implementations for captured creatures."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

import psycopg

from .errors import PersistenceError
from .models import CaptureRecord

logger = logging.getLogger(__name__)

CAPTURES_PER_RANK = 5


class CaptureStore(Protocol):
    async def write_capture(self, user_id: str, record: CaptureRecord) -> bool:
        """Persist a capture; True when new, False when the identity was already captured."""

    async def list_captures(self, user_id: str) -> list[CaptureRecord]:
        """Return the user's captures, newest first."""


def trainer_rank(capture_count: int) -> int:
    """Rank starts at 1 and goes up by one for every five captures."""
    return capture_count // CAPTURES_PER_RANK + 1


def format_rank(rank: int) -> str:
    return f"{rank:03d}"


class InMemoryCaptureStore:
    def __init__(self) -> None:
        self._captures: dict[str, dict[int, CaptureRecord]] = {}

    async def write_capture(self, user_id: str, record: CaptureRecord) -> bool:
        user_captures = self._captures.setdefault(user_id, {})
        if record.identity in user_captures:
            return False
        user_captures[record.identity] = record
        return True

    async def list_captures(self, user_id: str) -> list[CaptureRecord]:
        records = list(self._captures.get(user_id, {}).values())
        return sorted(records, key=lambda record: record.captured_at, reverse=True)


@dataclass
class PostgresCaptureStore:
    database_url: str

    async def _connect(self) -> Any:
        return await psycopg.AsyncConnection.connect(self.database_url)

    async def write_capture(self, user_id: str, record: CaptureRecord) -> bool:
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        INSERT INTO captures (
                            user_id, identity, display_name, image_ref, category_tags,
                            mass_units, size_units, captured_at
                        )
                        VALUES (%s, %s, %s, %s, %s::jsonb, %s, %s, %s)
                        ON CONFLICT (user_id, identity) DO NOTHING
                        RETURNING identity
                        """,
                        (
                            user_id,
                            record.identity,
                            record.display_name,
                            record.image_ref,
                            json.dumps(list(record.category_tags)),
                            record.mass_units,
                            record.size_units,
                            record.captured_at,
                        ),
                    )
                    row = await cur.fetchone()
                await conn.commit()
        except psycopg.Error as exc:
            raise PersistenceError(f"Could not store capture {record.identity} for {user_id}") from exc

        if row is None:
            logger.info("Capture %s already stored for %s", record.identity, user_id)
            return False
        return True

    async def list_captures(self, user_id: str) -> list[CaptureRecord]:
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        SELECT identity, display_name, image_ref, category_tags,
                               mass_units, size_units, captured_at
                        FROM captures
                        WHERE user_id = %s
                        ORDER BY captured_at DESC
                        """,
                        (user_id,),
                    )
                    rows = await cur.fetchall()
        except psycopg.Error as exc:
            raise PersistenceError(f"Could not list captures for {user_id}") from exc

        return [_record_from_row(row) for row in rows]


def _record_from_row(row: tuple) -> CaptureRecord:
    identity, display_name, image_ref, category_tags, mass_units, size_units, captured_at = row
    tags = category_tags if isinstance(category_tags, list) else json.loads(category_tags)
    if isinstance(captured_at, datetime):
        captured_at = captured_at.astimezone(timezone.utc).isoformat()
    return CaptureRecord(
        identity=int(identity),
        display_name=display_name,
        image_ref=image_ref,
        category_tags=tuple(tags),
        mass_units=mass_units,
        size_units=size_units,
        captured_at=str(captured_at),
    )


def create_capture_store(database_url: str | None) -> CaptureStore:
    if database_url:
        return PostgresCaptureStore(database_url=database_url)
    return InMemoryCaptureStore()
