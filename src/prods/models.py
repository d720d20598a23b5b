"""Prod and prod-queue models. Pure data, no I/O."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from refract.shared.models import WireModel
from refract.writing.models import Sentence

FALLBACK_PROD_TEXT = "What stands out most about this?"
FALLBACK_PROD_CONFIDENCE = 0.6


class QueueStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueItem(BaseModel):
    """A request to produce a prod for one sentence."""

    id: str
    full_text: str
    sentence: Sentence
    timestamp: float
    status: QueueStatus = QueueStatus.PENDING
    force: bool = False


class QueueState(BaseModel):
    items: list[QueueItem] = Field(default_factory=list)
    is_processing: bool = False

    def with_status(self, status: QueueStatus) -> list[QueueItem]:
        return [item for item in self.items if item.status == status]

    def get(self, item_id: str) -> QueueItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


# -- reducer actions ---------------------------------------------------


class Enqueue(BaseModel):
    item: QueueItem


class StartProcessing(BaseModel):
    item_id: str


class CompleteProcessing(BaseModel):
    item_id: str


class FailProcessing(BaseModel):
    item_id: str


class SetProcessing(BaseModel):
    value: bool


class ClearQueue(BaseModel):
    pass


QueueAction = Enqueue | StartProcessing | CompleteProcessing | FailProcessing | SetProcessing | ClearQueue


# -- prod generation ---------------------------------------------------


class ProdRequest(WireModel):
    """Body of a prod request."""

    last_paragraph: str
    full_text: str = ""
    keywords: list[str] = Field(default_factory=list)
    recent_prods: list[str] = Field(default_factory=list)


class ProdResponse(WireModel):
    """Model answer for a prod request.

    An empty ``selected_prod`` or ``should_skip`` means nothing is shown.
    """

    selected_prod: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    should_skip: bool = False

    @property
    def has_text(self) -> bool:
        return bool(self.selected_prod.strip())

    @classmethod
    def fallback(cls) -> ProdResponse:
        return cls(selected_prod=FALLBACK_PROD_TEXT, confidence=FALLBACK_PROD_CONFIDENCE)

    @classmethod
    def soft_skip(cls) -> ProdResponse:
        return cls(selected_prod="", confidence=0.0, should_skip=True)


class Prod(BaseModel):
    """A prod shown next to the sentence that prompted it."""

    id: str
    text: str
    sentence_id: str
    source_text: str
    timestamp: float
    pinned: bool = False
