"""Shared feed posts: atomic like counter, append-only comments, live snapshots."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Protocol

import psycopg

from .errors import NotFoundError, PersistenceError
from .models import CaptureRecord, FeedComment, FeedPost, utc_now_iso

logger = logging.getLogger(__name__)

FEED_CHANNEL = "feed_posts"
COUNTER_FIELDS = frozenset({"like_count"})
CHILD_COLLECTIONS = frozenset({"comments"})
DEFAULT_FEED_LIMIT = 50

_sequence = itertools.count()


def push_key() -> str:
    """Unique key that sorts by creation time."""
    return f"{time.time_ns():020d}-{next(_sequence):08d}-{uuid.uuid4().hex[:8]}"


class Subscription(Protocol):
    post_id: str
    closed: bool

    def __aiter__(self) -> AsyncIterator[FeedPost]:
        """Stream full post snapshots, starting with the current one."""


class FeedStore(Protocol):
    async def create_post(
        self, author_id: str, author_name: str, subject_name: str, subject_image_ref: str, caption: str
    ) -> FeedPost:
        """Insert a post with zero likes and a server timestamp."""

    async def get_post(self, post_id: str) -> FeedPost:
        """Return the current snapshot or raise NotFoundError."""

    async def list_posts(self, limit: int) -> list[FeedPost]:
        """Return the most recent posts, newest first."""

    async def increment_counter(self, post_id: str, field: str) -> int:
        """Atomically add one to a counter and return the new value."""

    async def append_child(self, post_id: str, collection: str, record: dict[str, Any]) -> str:
        """Append a child record with a generated key and server timestamp."""

    def subscribe(self, post_id: str) -> Subscription:
        """Open a snapshot stream for one post."""

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Release a snapshot stream."""


def _check_counter(field: str) -> None:
    if field not in COUNTER_FIELDS:
        raise ValueError(f"Unknown counter field: {field}")


def _check_collection(collection: str) -> None:
    if collection not in CHILD_COLLECTIONS:
        raise ValueError(f"Unknown child collection: {collection}")


class InMemorySubscription:
    def __init__(self, store: InMemoryFeedStore, post_id: str) -> None:
        self.store = store
        self.post_id = post_id
        self.closed = False
        self._queue: asyncio.Queue[FeedPost | None] = asyncio.Queue()

    def push(self, post: FeedPost) -> None:
        if not self.closed:
            self._queue.put_nowait(post)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[FeedPost]:
        return self._stream()

    async def _stream(self) -> AsyncIterator[FeedPost]:
        if self.closed:
            return
        yield await self.store.get_post(self.post_id)
        while True:
            snapshot = await self._queue.get()
            if snapshot is None:
                return
            yield snapshot


class InMemoryFeedStore:
    def __init__(self) -> None:
        self._posts: dict[str, FeedPost] = {}
        self._subscriptions: dict[str, set[InMemorySubscription]] = {}
        self._lock = asyncio.Lock()

    async def create_post(
        self, author_id: str, author_name: str, subject_name: str, subject_image_ref: str, caption: str
    ) -> FeedPost:
        post = FeedPost(
            post_id=push_key(),
            author_id=author_id,
            author_name=author_name,
            subject_name=subject_name,
            subject_image_ref=subject_image_ref,
            caption=caption,
            created_at=utc_now_iso(),
        )
        async with self._lock:
            self._posts[post.post_id] = post
        return post

    async def get_post(self, post_id: str) -> FeedPost:
        post = self._posts.get(post_id)
        if post is None:
            raise NotFoundError(f"Post {post_id} does not exist")
        return post

    async def list_posts(self, limit: int) -> list[FeedPost]:
        posts = sorted(self._posts.values(), key=lambda post: (post.created_at, post.post_id), reverse=True)
        return posts[:limit]

    async def increment_counter(self, post_id: str, field: str) -> int:
        _check_counter(field)
        async with self._lock:
            post = await self.get_post(post_id)
            updated = replace(post, **{field: getattr(post, field) + 1})
            self._posts[post_id] = updated
        self._publish(updated)
        return getattr(updated, field)

    async def append_child(self, post_id: str, collection: str, record: dict[str, Any]) -> str:
        _check_collection(collection)
        async with self._lock:
            post = await self.get_post(post_id)
            comment = FeedComment(
                comment_id=push_key(),
                author_name=str(record["authorName"]),
                text=str(record["text"]),
                created_at=utc_now_iso(),
            )
            updated = replace(post, comments={**post.comments, comment.comment_id: comment})
            self._posts[post_id] = updated
        self._publish(updated)
        return comment.comment_id

    def subscribe(self, post_id: str) -> InMemorySubscription:
        subscription = InMemorySubscription(store=self, post_id=post_id)
        self._subscriptions.setdefault(post_id, set()).add(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.post_id)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.post_id, None)
        if isinstance(subscription, InMemorySubscription):
            subscription.close()

    def _publish(self, post: FeedPost) -> None:
        for subscription in list(self._subscriptions.get(post.post_id, ())):
            subscription.push(post)


def _iso(value: Any) -> str:
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat()
    return str(value)


class PostgresSubscription:
    """LISTEN on the feed channel and re-read the post on each notification."""

    def __init__(self, store: PostgresFeedStore, post_id: str, poll_seconds: float = 1.0) -> None:
        self.store = store
        self.post_id = post_id
        self.poll_seconds = poll_seconds
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def __aiter__(self) -> AsyncIterator[FeedPost]:
        return self._stream()

    async def _stream(self) -> AsyncIterator[FeedPost]:
        if self.closed:
            return
        try:
            conn = await psycopg.AsyncConnection.connect(self.store.database_url, autocommit=True)
        except psycopg.Error as exc:
            raise PersistenceError(f"Could not subscribe to post {self.post_id}") from exc
        try:
            await conn.execute(f"LISTEN {FEED_CHANNEL}")
            yield await self.store.get_post(self.post_id)
            while not self.closed:
                async for notify in conn.notifies(timeout=self.poll_seconds):
                    if notify.payload == self.post_id and not self.closed:
                        yield await self.store.get_post(self.post_id)
        finally:
            await conn.close()


@dataclass
class PostgresFeedStore:
    database_url: str

    async def _connect(self) -> Any:
        return await psycopg.AsyncConnection.connect(self.database_url)

    async def create_post(
        self, author_id: str, author_name: str, subject_name: str, subject_image_ref: str, caption: str
    ) -> FeedPost:
        post_id = push_key()
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        INSERT INTO feed_posts (
                            id, author_id, author_name, subject_name, subject_image_ref, caption, like_count
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, 0)
                        RETURNING created_at
                        """,
                        (post_id, author_id, author_name, subject_name, subject_image_ref, caption),
                    )
                    row = await cur.fetchone()
                await conn.commit()
        except psycopg.Error as exc:
            raise PersistenceError("Could not create feed post") from exc

        return FeedPost(
            post_id=post_id,
            author_id=author_id,
            author_name=author_name,
            subject_name=subject_name,
            subject_image_ref=subject_image_ref,
            caption=caption,
            created_at=_iso(row[0]),
        )

    async def get_post(self, post_id: str) -> FeedPost:
        posts = await self._load_posts(
            """
            SELECT id, author_id, author_name, subject_name, subject_image_ref, caption, created_at, like_count
            FROM feed_posts
            WHERE id = %s
            """,
            (post_id,),
        )
        if not posts:
            raise NotFoundError(f"Post {post_id} does not exist")
        return posts[0]

    async def list_posts(self, limit: int) -> list[FeedPost]:
        return await self._load_posts(
            """
            SELECT id, author_id, author_name, subject_name, subject_image_ref, caption, created_at, like_count
            FROM feed_posts
            ORDER BY created_at DESC, id DESC
            LIMIT %s
            """,
            (limit,),
        )

    async def increment_counter(self, post_id: str, field: str) -> int:
        _check_counter(field)
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    # single statement; the row lock serializes concurrent increments
                    await cur.execute(
                        f"UPDATE feed_posts SET {field} = {field} + 1 WHERE id = %s RETURNING {field}",
                        (post_id,),
                    )
                    row = await cur.fetchone()
                    if row is not None:
                        await cur.execute("SELECT pg_notify(%s, %s)", (FEED_CHANNEL, post_id))
                await conn.commit()
        except psycopg.Error as exc:
            raise PersistenceError(f"Could not increment {field} on {post_id}") from exc

        if row is None:
            raise NotFoundError(f"Post {post_id} does not exist")
        return int(row[0])

    async def append_child(self, post_id: str, collection: str, record: dict[str, Any]) -> str:
        _check_collection(collection)
        comment_id = push_key()
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        INSERT INTO feed_comments (id, post_id, author_name, text)
                        SELECT %s, id, %s, %s FROM feed_posts WHERE id = %s
                        RETURNING id
                        """,
                        (comment_id, str(record["authorName"]), str(record["text"]), post_id),
                    )
                    row = await cur.fetchone()
                    if row is not None:
                        await cur.execute("SELECT pg_notify(%s, %s)", (FEED_CHANNEL, post_id))
                await conn.commit()
        except psycopg.Error as exc:
            raise PersistenceError(f"Could not add comment to {post_id}") from exc

        if row is None:
            raise NotFoundError(f"Post {post_id} does not exist")
        return comment_id

    def subscribe(self, post_id: str) -> PostgresSubscription:
        return PostgresSubscription(store=self, post_id=post_id)

    async def unsubscribe(self, subscription: Subscription) -> None:
        if isinstance(subscription, PostgresSubscription):
            subscription.close()

    async def _load_posts(self, sql: str, params: tuple) -> list[FeedPost]:
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(sql, params)
                    post_rows = await cur.fetchall()
                    if not post_rows:
                        return []
                    await cur.execute(
                        """
                        SELECT id, post_id, author_name, text, created_at
                        FROM feed_comments
                        WHERE post_id = ANY(%s)
                        """,
                        ([row[0] for row in post_rows],),
                    )
                    comment_rows = await cur.fetchall()
        except psycopg.Error as exc:
            raise PersistenceError("Could not read feed posts") from exc

        comments: dict[str, dict[str, FeedComment]] = {}
        for comment_id, post_id, author_name, text, created_at in comment_rows:
            comments.setdefault(post_id, {})[comment_id] = FeedComment(
                comment_id=comment_id,
                author_name=author_name,
                text=text,
                created_at=_iso(created_at),
            )
        return [
            FeedPost(
                post_id=post_id,
                author_id=author_id,
                author_name=author_name,
                subject_name=subject_name,
                subject_image_ref=subject_image_ref,
                caption=caption,
                created_at=_iso(created_at),
                like_count=int(like_count),
                comments=comments.get(post_id, {}),
            )
            for post_id, author_id, author_name, subject_name, subject_image_ref, caption, created_at, like_count in post_rows
        ]


def create_feed_store(database_url: str | None) -> FeedStore:
    if database_url:
        return PostgresFeedStore(database_url=database_url)
    return InMemoryFeedStore()


class FeedCounterService:
    """Feed operations exposed to the UI layer."""

    def __init__(self, store: FeedStore, feed_limit: int = DEFAULT_FEED_LIMIT) -> None:
        self.store = store
        self.feed_limit = feed_limit

    async def increment_like(self, post_id: str) -> int:
        likes = await self.store.increment_counter(post_id, "like_count")
        logger.debug("Post %s now has %d likes", post_id, likes)
        return likes

    async def add_comment(self, post_id: str, author_name: str, text: str) -> str:
        text = text.strip()
        if not text:
            raise ValueError("Comment text must not be blank")
        return await self.store.append_child(post_id, "comments", {"authorName": author_name, "text": text})

    async def publish_post(self, author_id: str, author_name: str, capture: CaptureRecord, caption: str) -> FeedPost:
        post = await self.store.create_post(
            author_id=author_id,
            author_name=author_name,
            subject_name=capture.display_name,
            subject_image_ref=capture.image_ref,
            caption=caption,
        )
        logger.info("%s shared %s as post %s", author_name, capture.display_name, post.post_id)
        return post

    async def list_feed(self, limit: int | None = None) -> list[FeedPost]:
        return await self.store.list_posts(limit if limit is not None else self.feed_limit)

    def watch_post(self, post_id: str) -> Subscription:
        return self.store.subscribe(post_id)

    async def unwatch_post(self, subscription: Subscription) -> None:
        await self.store.unsubscribe(subscription)
