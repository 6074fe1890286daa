"""Encounter engine: spawning, the flee window and capture attempts."""

from __future__ import annotations

import logging
import random
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .captures import CaptureStore
from .catalog import CatalogListing, CatalogRepository, artwork_ref
from .config import DEFAULT_ARTWORK_URL
from .errors import (
    CaptureError,
    EmptyCatalogError,
    InvalidStateError,
    NetworkError,
    NotFoundError,
    PersistenceError,
    SpawnError,
)
from .models import CaptureRecord, CatalogDetail, CatalogSummary, EncounterSession
from .timers import AsyncioTimerScheduler, TimerHandle, TimerScheduler

logger = logging.getLogger(__name__)

DEFAULT_FLEE_SECONDS = 10.0


class EncounterState(str, Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    ACTIVE = "active"
    CAPTURING = "capturing"
    CAPTURED = "captured"
    FLED = "fled"


class CaptureOutcome(str, Enum):
    CAPTURED = "captured"
    ALREADY_CAPTURED = "already_captured"
    TARGET_GONE = "target_gone"


@dataclass(frozen=True)
class CaptureResult:
    outcome: CaptureOutcome
    session: EncounterSession | None
    newly_recorded: bool = False


class EncounterEngine:
    """State machine behind one encounter screen.

    Owns at most one live session and the set of identities the user has
    already captured. Every operation runs on the event loop that also fires
    the flee timer, so checks and transitions between awaits are atomic.
    """

    def __init__(
        self,
        user_id: str,
        repository: CatalogRepository,
        capture_store: CaptureStore,
        scheduler: TimerScheduler | None = None,
        flee_seconds: float = DEFAULT_FLEE_SECONDS,
        artwork_url: str = DEFAULT_ARTWORK_URL,
        rng: random.Random | None = None,
        on_fled: Callable[[EncounterSession], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.user_id = user_id
        self.repository = repository
        self.capture_store = capture_store
        self.scheduler = scheduler if scheduler is not None else AsyncioTimerScheduler()
        self.flee_seconds = flee_seconds
        self.artwork_url = artwork_url
        self.rng = rng if rng is not None else random.Random()
        self.on_fled = on_fled
        self.clock = clock

        self.state = EncounterState.IDLE
        self.caught_identities: set[int] = set()
        self.catalog_error: NetworkError | None = None
        self._summaries: tuple[CatalogSummary, ...] = ()
        self._session: EncounterSession | None = None
        self._fled_session: EncounterSession | None = None
        self._flee_timer: TimerHandle | None = None
        self._generation = 0

    @property
    def summaries(self) -> tuple[CatalogSummary, ...]:
        return self._summaries

    @property
    def flee_timer_armed(self) -> bool:
        return self._flee_timer is not None and self._flee_timer.pending

    def current_session(self) -> EncounterSession | None:
        return self._session

    async def enter(self) -> CatalogListing:
        """Seed the caught set from the capture store and load the summary list."""
        records = await self.capture_store.list_captures(self.user_id)
        self.caught_identities.update(record.identity for record in records)

        listing = await self.repository.get_summary_list()
        self._summaries = listing.summaries
        self.catalog_error = listing.error
        if self.state is EncounterState.FLED:
            self.state = EncounterState.IDLE
            self._fled_session = None
        return listing

    async def spawn(self, target: int | None = None) -> EncounterSession:
        self._generation += 1
        generation = self._generation
        self._retire_session()
        self.state = EncounterState.SPAWNING

        try:
            if target is not None:
                session = await self._resolve_target(target)
            else:
                session = await self._resolve_random()
        except (SpawnError, EmptyCatalogError):
            if generation == self._generation:
                self.state = EncounterState.IDLE
            raise

        if generation != self._generation:
            raise InvalidStateError("Spawn was superseded by a newer request")

        self._session = session
        self.state = EncounterState.ACTIVE
        if not session.is_already_captured:
            self._arm_flee_timer(session)
        logger.info(
            "Spawned %s (%s) for %s, already captured=%s",
            session.target_display_name,
            session.target_identity,
            self.user_id,
            session.is_already_captured,
        )
        return session

    async def attempt_capture(self) -> CaptureResult:
        if self.state is EncounterState.FLED:
            return CaptureResult(outcome=CaptureOutcome.TARGET_GONE, session=self._fled_session)

        session = self._session
        if session is None or self.state not in (EncounterState.ACTIVE, EncounterState.CAPTURED):
            raise InvalidStateError(f"Cannot capture while {self.state.value}")
        if session.is_already_captured:
            return CaptureResult(outcome=CaptureOutcome.ALREADY_CAPTURED, session=session)

        self._cancel_flee_timer()
        self.state = EncounterState.CAPTURING
        try:
            created = await self.capture_store.write_capture(self.user_id, CaptureRecord.from_session(session))
        except PersistenceError as exc:
            if self._session is session:
                self.state = EncounterState.ACTIVE
                self._arm_flee_timer(session)
            logger.warning("Capture of %s failed for %s: %s", session.target_identity, self.user_id, exc)
            raise CaptureError("Capture failed, try again", exc) from exc

        self.caught_identities.add(session.target_identity)
        session.is_already_captured = True
        if self._session is session:
            self.state = EncounterState.CAPTURED
        logger.info("Captured %s for %s", session.target_identity, self.user_id)
        return CaptureResult(outcome=CaptureOutcome.CAPTURED, session=session, newly_recorded=created)

    def close(self) -> None:
        """Tear down: cancel the timer and forget the session."""
        self._generation += 1
        self._retire_session()
        self.state = EncounterState.IDLE

    def _retire_session(self) -> None:
        self._cancel_flee_timer()
        self._session = None
        self._fled_session = None

    def _arm_flee_timer(self, session: EncounterSession) -> None:
        self._cancel_flee_timer()
        token = session.token
        self._flee_timer = self.scheduler.call_later(self.flee_seconds, lambda: self._on_flee_timer(token))

    def _cancel_flee_timer(self) -> None:
        if self._flee_timer is not None:
            self._flee_timer.cancel()
            self._flee_timer = None

    def _on_flee_timer(self, token: str) -> None:
        session = self._session
        if session is None or session.token != token or self.state is not EncounterState.ACTIVE:
            return
        session.has_fled = True
        self._session = None
        self._fled_session = session
        self._flee_timer = None
        self.state = EncounterState.FLED
        logger.info("%s fled from %s", session.target_display_name, self.user_id)
        if self.on_fled is not None:
            self.on_fled(session)

    async def _resolve_target(self, target: int) -> EncounterSession:
        try:
            detail = await self.repository.get_detail(target)
        except (NetworkError, NotFoundError) as exc:
            raise SpawnError(f"Could not load target {target}, retry", exc) from exc
        return self._session_from_detail(detail)

    async def _resolve_random(self) -> EncounterSession:
        if not self._summaries:
            raise EmptyCatalogError("No catalog entries loaded to spawn from")
        summary = self.rng.choice(self._summaries)
        try:
            detail = await self.repository.get_detail(summary.identity)
        except (NetworkError, NotFoundError) as exc:
            logger.warning("Spawning %s from summary only: %s", summary.identity, exc)
            return self._new_session(
                identity=summary.identity,
                display_name=summary.display_name,
                image_ref=artwork_ref(summary.identity, self.artwork_url),
                category_tags=(),
            )
        return self._session_from_detail(detail)

    def _session_from_detail(self, detail: CatalogDetail) -> EncounterSession:
        return self._new_session(
            identity=detail.identity,
            display_name=detail.display_name,
            image_ref=artwork_ref(detail.identity, self.artwork_url),
            category_tags=detail.category_tags,
            mass_units=detail.mass_units,
            size_units=detail.size_units,
        )

    def _new_session(
        self,
        identity: int,
        display_name: str,
        image_ref: str,
        category_tags: tuple[str, ...],
        mass_units: float = 0,
        size_units: float = 0,
    ) -> EncounterSession:
        return EncounterSession(
            token=uuid.uuid4().hex,
            target_identity=identity,
            target_display_name=display_name,
            target_image_ref=image_ref,
            target_category_tags=tuple(category_tags),
            spawned_at=self.clock(),
            is_already_captured=identity in self.caught_identities,
            target_mass_units=mass_units,
            target_size_units=size_units,
        )
