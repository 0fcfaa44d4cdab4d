from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SortType = Literal["recent", "worst", "best"]
SORT_TYPES: tuple[SortType, ...] = ("recent", "worst", "best")


class Review(BaseModel):
    """A single extracted review.

    Instances are frozen; relabeling or enrichment produces a copy through
    ``model_copy(update=...)`` so the same id always maps to the same content.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    author: str = ""
    rating: int = Field(ge=1, le=5)
    text: str = ""
    date: datetime | None = None
    relative_time: str = ""
    original_url: str = ""
    sort_origin: str = "recent"
    extraction_confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    scraped_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
