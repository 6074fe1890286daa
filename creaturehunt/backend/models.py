"""Domain records for the catalog, encounters, captures and the feed."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class CatalogSummary:
    identity: int
    display_name: str
    resource_ref: str

    def __post_init__(self) -> None:
        if self.identity < 1:
            raise ValueError(f"catalog identity must be >= 1, got {self.identity}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "displayName": self.display_name,
            "resourceRef": self.resource_ref,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CatalogSummary:
        return cls(
            identity=int(payload["identity"]),
            display_name=str(payload["displayName"]),
            resource_ref=str(payload["resourceRef"]),
        )


@dataclass(frozen=True)
class BaseMetric:
    name: str
    value: int


@dataclass(frozen=True)
class CatalogDetail:
    identity: int
    display_name: str
    category_tags: tuple[str, ...]
    trait_tags: tuple[str, ...]
    base_metrics: tuple[BaseMetric, ...]
    image_ref: str
    mass_units: float
    size_units: float
    narrative_text: str | None = None
    evolution_ref: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "displayName": self.display_name,
            "categoryTags": list(self.category_tags),
            "traitTags": list(self.trait_tags),
            "baseMetrics": [{"name": metric.name, "value": metric.value} for metric in self.base_metrics],
            "imageRef": self.image_ref,
            "massUnits": self.mass_units,
            "sizeUnits": self.size_units,
            "narrativeText": self.narrative_text,
            "evolutionRef": self.evolution_ref,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CatalogDetail:
        return cls(
            identity=int(payload["identity"]),
            display_name=str(payload["displayName"]),
            category_tags=tuple(payload["categoryTags"]),
            trait_tags=tuple(payload["traitTags"]),
            base_metrics=tuple(
                BaseMetric(name=str(metric["name"]), value=int(metric["value"])) for metric in payload["baseMetrics"]
            ),
            image_ref=str(payload["imageRef"]),
            mass_units=payload["massUnits"],
            size_units=payload["sizeUnits"],
            narrative_text=payload.get("narrativeText"),
            evolution_ref=payload.get("evolutionRef"),
        )


@dataclass
class EncounterSession:
    """One spawned target. Mutated only by the engine that created it."""

    token: str
    target_identity: int
    target_display_name: str
    target_image_ref: str
    target_category_tags: tuple[str, ...]
    spawned_at: float
    is_already_captured: bool = False
    has_fled: bool = False
    target_mass_units: float = 0
    target_size_units: float = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "targetIdentity": self.target_identity,
            "targetDisplayName": self.target_display_name,
            "targetImageRef": self.target_image_ref,
            "targetCategoryTags": list(self.target_category_tags),
            "spawnedAt": self.spawned_at,
            "isAlreadyCaptured": self.is_already_captured,
            "hasFled": self.has_fled,
        }


@dataclass(frozen=True)
class CaptureRecord:
    identity: int
    display_name: str
    image_ref: str
    category_tags: tuple[str, ...]
    mass_units: float
    size_units: float
    captured_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_session(cls, session: EncounterSession) -> CaptureRecord:
        return cls(
            identity=session.target_identity,
            display_name=session.target_display_name,
            image_ref=session.target_image_ref,
            category_tags=session.target_category_tags,
            mass_units=session.target_mass_units,
            size_units=session.target_size_units,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "displayName": self.display_name,
            "imageRef": self.image_ref,
            "categoryTags": list(self.category_tags),
            "massUnits": self.mass_units,
            "sizeUnits": self.size_units,
            "capturedAt": self.captured_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CaptureRecord:
        return cls(
            identity=int(payload["identity"]),
            display_name=str(payload["displayName"]),
            image_ref=str(payload["imageRef"]),
            category_tags=tuple(payload.get("categoryTags", [])),
            mass_units=payload.get("massUnits", 0),
            size_units=payload.get("sizeUnits", 0),
            captured_at=str(payload["capturedAt"]),
        )


@dataclass(frozen=True)
class FeedComment:
    comment_id: str
    author_name: str
    text: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "commentId": self.comment_id,
            "authorName": self.author_name,
            "text": self.text,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class FeedPost:
    post_id: str
    author_name: str
    subject_name: str
    subject_image_ref: str
    caption: str
    created_at: str
    like_count: int = 0
    comments: dict[str, FeedComment] = field(default_factory=dict)
    author_id: str | None = None

    def ordered_comments(self) -> list[FeedComment]:
        """Comments by server timestamp, ties broken by key."""
        return sorted(self.comments.values(), key=lambda comment: (comment.created_at, comment.comment_id))

    def to_dict(self) -> dict[str, Any]:
        return {
            "postId": self.post_id,
            "authorId": self.author_id,
            "authorName": self.author_name,
            "subjectName": self.subject_name,
            "subjectImageRef": self.subject_image_ref,
            "caption": self.caption,
            "createdAt": self.created_at,
            "likeCount": self.like_count,
            "comments": [comment.to_dict() for comment in self.ordered_comments()],
        }
