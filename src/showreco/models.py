from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class DeckMode(str, Enum):
    """Viewing context a deck is built for."""
    TONIGHT = "tonight"            # immediate, same-day viewing
    THIS_WEEKEND = "this_weekend"  # planned viewing

    @classmethod
    def parse(cls, value: "str | DeckMode") -> "DeckMode":
        if isinstance(value, DeckMode):
            return value
        aliases = {
            "tonight": cls.TONIGHT,
            "immediate": cls.TONIGHT,
            "this_weekend": cls.THIS_WEEKEND,
            "weekend": cls.THIS_WEEKEND,
            "planned": cls.THIS_WEEKEND,
        }
        key = value.strip().lower().replace("-", "_")
        if key not in aliases:
            raise ValueError(f"Invalid mode: {value}. Must be one of: {', '.join(aliases)}")
        return aliases[key]


class WatchActionKind(str, Enum):
    SAVED = "saved"
    WATCHED = "watched"
    DISMISSED = "dismissed"
    NOT_FOR_ME = "not_for_me"

    @classmethod
    def parse(cls, value: "str | WatchActionKind") -> "WatchActionKind":
        if isinstance(value, WatchActionKind):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ValueError(f"Invalid action: {value}. Must be one of: {valid}") from None


@dataclass
class Rating:
    user_id: str
    show_id: str
    enjoyment: float
    created_at: datetime
    hook: float | None = None
    consistency: float | None = None
    payoff: float | None = None
    heat: float | None = None
    recommend: bool | None = None  # None = no answer, distinct from False
    tags: list[str] = field(default_factory=list)


@dataclass
class Show:
    id: str
    title: str
    poster_path: str | None = None
    overview: str = ""
    first_air_date: str | None = None
    kind: str | None = None  # "movie" / "tv" when the catalog says so; not persisted

    @property
    def media_type(self) -> str:
        """Catalog kind when known, else series carry a premiere date and movies don't."""
        if self.kind in ("movie", "tv"):
            return self.kind
        return "tv" if self.first_air_date else "movie"


@dataclass
class WatchAction:
    user_id: str
    show_id: str
    action: WatchActionKind
    created_at: datetime


@dataclass
class ShowRecommendation:
    show_id: str
    title: str
    poster_path: str | None
    score: float
    explanation: str
    tags: list[str] = field(default_factory=list)


@dataclass
class HomePick:
    show_id: str
    title: str
    poster_path: str | None
    score: float
    explanation: str
    following_percent: int | None = None
    overall_percent: int | None = None
    tags: list[str] = field(default_factory=list)


@dataclass
class ShelfItem:
    show_id: str
    title: str
    poster_path: str | None
    recommend_percent: int | None
    label: str
    media_type: str = "tv"


@dataclass
class RecommendStats:
    total: int
    positive: int
    percent: int | None

    def as_dict(self) -> dict:
        return {"total": self.total, "positive": self.positive, "percent": self.percent}


@dataclass
class UserSimilarity:
    user_id: str
    username: str
    similarity: float


@dataclass
class FollowingActivity:
    rating_id: str
    username: str
    show_title: str
    poster_path: str | None
    enjoyment: float
    created_at: datetime
