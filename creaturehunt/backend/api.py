"""FastAPI endpoints for the catalog, encounters, captures and the live feed."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable

from fastapi import Depends, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from .cache import create_cache
from .captures import CaptureStore, create_capture_store, format_rank, trainer_rank
from .catalog import CatalogListing, CatalogRepository, HttpCatalogSource
from .config import CreatureHuntSettings, load_settings
from .engine import EncounterEngine, EncounterState
from .errors import (
    CaptureError,
    CreatureHuntError,
    EmptyCatalogError,
    InvalidStateError,
    NetworkError,
    NotFoundError,
    PersistenceError,
    SpawnError,
)
from .feed import FeedCounterService, FeedStore, Subscription, create_feed_store
from .timers import AsyncioTimerScheduler, TimerScheduler

logger = logging.getLogger(__name__)


class SpawnRequest(BaseModel):
    user_id: str = Field(min_length=1)
    target: int | None = Field(default=None, ge=1)


class CaptureRequest(BaseModel):
    user_id: str = Field(min_length=1)


class PostRequest(BaseModel):
    user_id: str = Field(min_length=1)
    author_name: str = Field(min_length=1, max_length=100)
    identity: int = Field(ge=1)
    caption: str = Field(default="", max_length=500)


class CommentRequest(BaseModel):
    author_name: str = Field(min_length=1, max_length=100)
    text: str = Field(min_length=1, max_length=1000)


def _http_error(exc: CreatureHuntError) -> HTTPException:
    if isinstance(exc, SpawnError):
        status = 404 if isinstance(exc.cause, NotFoundError) else 502
    elif isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, NetworkError):
        status = 502
    elif isinstance(exc, (PersistenceError, CaptureError)):
        status = 503
    elif isinstance(exc, (EmptyCatalogError, InvalidStateError)):
        status = 409
    else:
        status = 500
    return HTTPException(status_code=status, detail=str(exc))


async def _relay_snapshots(websocket: WebSocket, subscription: Subscription) -> None:
    try:
        async for post in subscription:
            await websocket.send_json({"type": "post.full", "post": post.to_dict()})
    except RuntimeError:
        logger.debug("Stopped relaying post %s to a closed socket", subscription.post_id)
    except CreatureHuntError as exc:
        logger.warning("Live updates for post %s stopped: %s", subscription.post_id, exc)
        with contextlib.suppress(RuntimeError):
            await websocket.close(code=1011)


def create_app(
    settings: CreatureHuntSettings | None = None,
    repository: CatalogRepository | None = None,
    capture_store: CaptureStore | None = None,
    feed_store: FeedStore | None = None,
    scheduler_factory: Callable[[], TimerScheduler] = AsyncioTimerScheduler,
) -> FastAPI:
    settings = settings if settings is not None else load_settings()
    owned_source: HttpCatalogSource | None = None
    if repository is None:
        owned_source = HttpCatalogSource(
            base_url=settings.catalog_url,
            limit=settings.catalog_limit,
            timeout=settings.http_timeout,
            artwork_url=settings.artwork_url,
        )
        repository = CatalogRepository(cache=create_cache(settings.cache_path), source=owned_source)
    captures = capture_store if capture_store is not None else create_capture_store(settings.database_url)
    feed_service = FeedCounterService(
        store=feed_store if feed_store is not None else create_feed_store(settings.database_url)
    )
    engines: dict[str, EncounterEngine] = {}

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for engine in engines.values():
            engine.close()
        engines.clear()
        await repository.aclose()
        if owned_source is not None:
            await owned_source.aclose()
        logger.info("Creature Hunt API shut down")

    app = FastAPI(title="Creature Hunt API", version="0.3.0", lifespan=lifespan)
    app.state.engines = engines
    app.state.repository = repository
    app.state.feed_service = feed_service

    def get_repository() -> CatalogRepository:
        return repository

    async def get_engine(user_id: str) -> tuple[EncounterEngine, CatalogListing | None]:
        """Return the user's engine, entering the encounter screen on first use."""
        engine = engines.get(user_id)
        if engine is not None:
            return engine, None
        engine = EncounterEngine(
            user_id=user_id,
            repository=repository,
            capture_store=captures,
            scheduler=scheduler_factory(),
            flee_seconds=settings.flee_seconds,
            artwork_url=settings.artwork_url,
        )
        try:
            listing = await engine.enter()
        except PersistenceError as exc:
            raise _http_error(exc) from exc
        # a concurrent request may have entered first
        existing = engines.setdefault(user_id, engine)
        if existing is not engine:
            engine.close()
            return existing, None
        return engine, listing

    def encounter_payload(engine: EncounterEngine) -> dict[str, Any]:
        session = engine.current_session()
        return {
            "state": engine.state.value,
            "session": session.to_dict() if session is not None else None,
            "fleeTimerArmed": engine.flee_timer_armed,
        }

    @app.get("/api/catalog")
    async def get_catalog(local_repository: CatalogRepository = Depends(get_repository)) -> dict[str, Any]:
        listing = await local_repository.get_summary_list()
        return {
            "summaries": [summary.to_dict() for summary in listing.summaries],
            "source": listing.source,
            "error": str(listing.error) if listing.error is not None else None,
        }

    @app.post("/api/catalog/refresh")
    async def refresh_catalog(local_repository: CatalogRepository = Depends(get_repository)) -> dict[str, Any]:
        listing = await local_repository.refresh_summary_list()
        return {
            "summaries": [summary.to_dict() for summary in listing.summaries],
            "source": listing.source,
            "error": str(listing.error) if listing.error is not None else None,
        }

    @app.get("/api/catalog/{identity}")
    async def get_catalog_detail(
        identity: int,
        local_repository: CatalogRepository = Depends(get_repository),
    ) -> dict[str, Any]:
        try:
            detail = await local_repository.get_detail(identity)
        except (NetworkError, NotFoundError) as exc:
            raise _http_error(exc) from exc
        return detail.to_dict()

    @app.post("/api/encounters/enter")
    async def enter_encounters(user_id: str = Query(min_length=1)) -> dict[str, Any]:
        engine, listing = await get_engine(user_id)
        if listing is None:
            try:
                listing = await engine.enter()
            except PersistenceError as exc:
                raise _http_error(exc) from exc
        return {
            "caught": sorted(engine.caught_identities),
            "catalogSize": len(listing.summaries),
            "error": str(listing.error) if listing.error is not None else None,
        }

    @app.post("/api/encounters/leave")
    async def leave_encounters(user_id: str = Query(min_length=1)) -> dict[str, Any]:
        engine = engines.pop(user_id, None)
        if engine is not None:
            engine.close()
            logger.info("Closed encounter screen for %s", user_id)
        return {"userId": user_id, "closed": engine is not None}

    @app.post("/api/encounters/spawn")
    async def spawn(payload: SpawnRequest) -> dict[str, Any]:
        engine, _ = await get_engine(payload.user_id)
        try:
            await engine.spawn(target=payload.target)
        except (SpawnError, EmptyCatalogError, InvalidStateError) as exc:
            raise _http_error(exc) from exc
        return encounter_payload(engine)

    @app.post("/api/encounters/capture")
    async def capture(payload: CaptureRequest) -> dict[str, Any]:
        engine, _ = await get_engine(payload.user_id)
        try:
            result = await engine.attempt_capture()
        except (CaptureError, InvalidStateError) as exc:
            raise _http_error(exc) from exc
        response = encounter_payload(engine)
        response["outcome"] = result.outcome.value
        response["newlyRecorded"] = result.newly_recorded
        return response

    @app.get("/api/encounters/current")
    def current_encounter(user_id: str = Query(min_length=1)) -> dict[str, Any]:
        engine = engines.get(user_id)
        if engine is None:
            return {"state": EncounterState.IDLE.value, "session": None, "fleeTimerArmed": False}
        return encounter_payload(engine)

    @app.get("/api/captures")
    async def list_captures(user_id: str = Query(min_length=1)) -> dict[str, Any]:
        try:
            records = await captures.list_captures(user_id)
        except PersistenceError as exc:
            raise _http_error(exc) from exc
        return {
            "captures": [record.to_dict() for record in records],
            "rank": format_rank(trainer_rank(len(records))),
        }

    @app.get("/api/feed")
    async def list_feed(limit: int = Query(default=50, ge=1, le=200)) -> dict[str, Any]:
        try:
            posts = await feed_service.list_feed(limit)
        except PersistenceError as exc:
            raise _http_error(exc) from exc
        return {"posts": [post.to_dict() for post in posts]}

    @app.post("/api/feed")
    async def publish(payload: PostRequest) -> dict[str, Any]:
        try:
            records = await captures.list_captures(payload.user_id)
            capture_record = next((record for record in records if record.identity == payload.identity), None)
            if capture_record is None:
                raise NotFoundError(f"{payload.user_id} has not captured {payload.identity}")
            post = await feed_service.publish_post(
                author_id=payload.user_id,
                author_name=payload.author_name,
                capture=capture_record,
                caption=payload.caption,
            )
        except (NotFoundError, PersistenceError) as exc:
            raise _http_error(exc) from exc
        return post.to_dict()

    @app.post("/api/feed/{post_id}/likes")
    async def like(post_id: str) -> dict[str, Any]:
        try:
            likes = await feed_service.increment_like(post_id)
        except (NotFoundError, PersistenceError) as exc:
            raise _http_error(exc) from exc
        return {"postId": post_id, "likeCount": likes}

    @app.post("/api/feed/{post_id}/comments")
    async def comment(post_id: str, payload: CommentRequest) -> dict[str, Any]:
        try:
            comment_id = await feed_service.add_comment(post_id, payload.author_name, payload.text)
            post = await feed_service.store.get_post(post_id)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except (NotFoundError, PersistenceError) as exc:
            raise _http_error(exc) from exc
        return {"commentId": comment_id, "post": post.to_dict()}

    @app.websocket("/ws/feed/{post_id}")
    async def feed_ws(websocket: WebSocket, post_id: str) -> None:
        try:
            await feed_service.store.get_post(post_id)
        except NotFoundError:
            await websocket.close(code=1008)
            return

        await websocket.accept()
        subscription = feed_service.watch_post(post_id)
        relay = asyncio.create_task(_relay_snapshots(websocket, subscription))
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await feed_service.unwatch_post(subscription)
            relay.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await relay

    return app


app = create_app()
