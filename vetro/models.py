"""Pydantic models describing the persisted library document."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .classifier import series_key
from .utils import utcnow

DOCUMENT_VERSION = 1


class DocumentModel(BaseModel):
    """Base model using the camelCase keys of the stored document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AIDetails(DocumentModel):
    """Opaque record of a successful enrichment run."""

    generated_at: datetime
    model: str
    data: dict[str, Any] = Field(default_factory=dict)


class Episode(DocumentModel):
    """A single episode file owned by a series entry."""

    id: str
    season: int = Field(ge=1)
    episode: int = Field(ge=1)
    file_name: str
    storage_path: str
    file_size: int = 0

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.season, self.episode)


class EntryBase(DocumentModel):
    """Fields shared by films and series."""

    id: str
    title: str = "Untitled"
    year: int = 0
    description: str = ""
    genres: list[str] = Field(default_factory=list)
    certification: str = ""
    storage_path: str = ""
    poster_path: str = ""
    poster_url: str = ""
    file_name: str = ""
    file_size: int = 0
    uploaded_at: datetime = Field(default_factory=utcnow)
    ai_details: AIDetails | None = None

    def display_title(self) -> str:
        title = (self.title or "").strip()
        return title or self.file_name or "Untitled"

    def asset_paths(self) -> list[str]:
        return [self.storage_path] if self.storage_path else []


class Film(EntryBase):
    """A standalone film with a single primary video asset."""

    kind: Literal["film"] = "film"

    @computed_field(alias="isSeries")  # type: ignore[prop-decorator]
    @property
    def is_series(self) -> bool:
        return False


class Series(EntryBase):
    """A series owning an ordered collection of episodes."""

    kind: Literal["series"] = "series"
    episodes: list[Episode] = Field(default_factory=list)

    @computed_field(alias="isSeries")  # type: ignore[prop-decorator]
    @property
    def is_series(self) -> bool:
        return True

    @field_validator("episodes")
    @classmethod
    def _dedupe_and_sort(cls, value: list[Episode]) -> list[Episode]:
        """Keep one episode per (season, episode) pair, the last one winning."""

        by_pair: dict[tuple[int, int], Episode] = {}
        for episode in value:
            by_pair[episode.sort_key] = episode
        return sorted(by_pair.values(), key=lambda item: item.sort_key)

    def add_episode(self, episode: Episode) -> None:
        """Insert or replace an episode, keeping the list sorted."""

        remaining = [item for item in self.episodes if item.sort_key != episode.sort_key]
        remaining.append(episode)
        remaining.sort(key=lambda item: item.sort_key)
        self.episodes = remaining
        self.file_size = sum(item.file_size for item in remaining)

    def episode_paths(self) -> set[str]:
        return {episode.storage_path for episode in self.episodes}

    def asset_paths(self) -> list[str]:
        return super().asset_paths() + [episode.storage_path for episode in self.episodes]

    @property
    def series_key(self) -> str:
        return series_key(self.title)


def _entry_kind(value: Any) -> str | None:
    if isinstance(value, dict):
        kind = value.get("kind")
        if kind in {"film", "series"}:
            return kind
        flag = value.get("isSeries", value.get("is_series"))
        return "series" if flag else "film"
    return getattr(value, "kind", None)


CatalogEntry = Annotated[
    Union[Annotated[Film, Tag("film")], Annotated[Series, Tag("series")]],
    Discriminator(_entry_kind),
]


class Avatar(DocumentModel):
    color: str = "#e50914"
    icon: str = "👤"


class Profile(DocumentModel):
    """A viewer profile."""

    id: str
    name: str
    avatar: Avatar = Field(default_factory=Avatar)
    created_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)


class WatchProgress(DocumentModel):
    last_position_sec: float = 0.0
    total_watched_sec: float = 0.0
    duration_sec: float = 0.0
    completion_pct: float = 0.0
    completed: bool = False
    last_watched_at: datetime | None = None


class SurveyResponse(DocumentModel):
    liked: bool | None = None
    survey_enjoyed: bool | None = None
    feedback_text: str = ""
    selected_tags: list[str] = Field(default_factory=list)
    answered_at: datetime = Field(default_factory=utcnow)


class InteractionEvent(DocumentModel):
    type: str
    film_id: str
    position_sec: float = 0.0
    at: datetime = Field(default_factory=utcnow)


class ProfileInteractions(DocumentModel):
    """Per-profile viewing state referencing catalog entries by id."""

    my_list: list[str] = Field(default_factory=list)
    likes: list[str] = Field(default_factory=list)
    dislikes: list[str] = Field(default_factory=list)
    watch_history: dict[str, WatchProgress] = Field(default_factory=dict)
    survey_responses: dict[str, SurveyResponse] = Field(default_factory=dict)
    events: list[InteractionEvent] = Field(default_factory=list)

    def purge(self, entry_id: str) -> None:
        """Drop every reference to ``entry_id`` except the append-only event log."""

        self.my_list = [item for item in self.my_list if item != entry_id]
        self.likes = [item for item in self.likes if item != entry_id]
        self.dislikes = [item for item in self.dislikes if item != entry_id]
        self.watch_history.pop(entry_id, None)
        self.survey_responses.pop(entry_id, None)

    def references(self, entry_id: str) -> bool:
        return (
            entry_id in self.my_list
            or entry_id in self.likes
            or entry_id in self.dislikes
            or entry_id in self.watch_history
            or entry_id in self.survey_responses
        )


class LibraryDocument(DocumentModel):
    """The single persisted catalog document."""

    version: int = DOCUMENT_VERSION
    created_at: datetime = Field(default_factory=utcnow)
    profiles: list[Profile] = Field(default_factory=list)
    films: list[CatalogEntry] = Field(default_factory=list)
    interactions: dict[str, ProfileInteractions] = Field(default_factory=dict)

    def find_entry(self, entry_id: str) -> Film | Series | None:
        for entry in self.films:
            if entry.id == entry_id:
                return entry
        return None

    def find_profile(self, profile_id: str) -> Profile | None:
        for profile in self.profiles:
            if profile.id == profile_id:
                return profile
        return None

    def known_ids(self) -> set[str]:
        return {entry.id for entry in self.films}

    def known_asset_paths(self) -> set[str]:
        """Every storage path already registered, episodes included."""

        paths: set[str] = set()
        for entry in self.films:
            paths.update(entry.asset_paths())
        return paths

    def series_by_key(self) -> dict[str, Series]:
        mapping: dict[str, Series] = {}
        for entry in self.films:
            if isinstance(entry, Series):
                mapping.setdefault(entry.series_key, entry)
        return mapping

    def interactions_for(self, profile_id: str) -> ProfileInteractions:
        """Return the interactions of a profile, creating them when absent."""

        interactions = self.interactions.get(profile_id)
        if interactions is None:
            interactions = ProfileInteractions()
            self.interactions[profile_id] = interactions
        return interactions


class SimilarTitle(BaseModel):
    title: str = ""
    reason: str = ""


class WatchAdvice(BaseModel):
    pace: str = ""
    best_time: str = Field(default="", alias="bestTime")
    with_who: str = Field(default="", alias="withWho")

    model_config = ConfigDict(populate_by_name=True)


class EnrichmentPayload(BaseModel):
    """Validated view of the provider's JSON response.

    Fields failing their type checks are dropped individually, so a partially
    wrong response still contributes whatever it got right.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str | None = None
    year: int | None = None
    description: str | None = None
    genres: list[str] | None = None
    certification: str | None = None
    poster_url: str | None = Field(default=None, alias="posterUrl")
    logline: str | None = None
    short_summary: str | None = Field(default=None, alias="shortSummary")
    themes: list[str] | None = None
    mood_tags: list[str] | None = Field(default=None, alias="moodTags")
    content_warnings: list[str] | None = Field(default=None, alias="contentWarnings")
    recommended_audience: str | None = Field(default=None, alias="recommendedAudience")
    similar_titles: list[SimilarTitle] | None = Field(default=None, alias="similarTitles")
    discussion_questions: list[str] | None = Field(
        default=None, alias="discussionQuestions"
    )
    watch_advice: WatchAdvice | None = Field(default=None, alias="watchAdvice")
    confidence: float | None = None

    @classmethod
    def from_raw(cls, data: dict[str, Any]) -> "EnrichmentPayload":
        """Validate each known field on its own and keep the ones that pass."""

        accepted: dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            key = field.alias or name
            if key not in data:
                continue
            try:
                cls.model_validate({key: data[key]})
            except ValueError:
                continue
            accepted[key] = data[key]
        payload = cls.model_validate(accepted)
        if payload.year is not None and payload.year <= 0:
            payload.year = None
        if payload.title is not None and not payload.title.strip():
            payload.title = None
        return payload

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)
