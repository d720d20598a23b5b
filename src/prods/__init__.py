"""Prods: short reflective questions surfaced while the user writes."""

from refract.prods.generator import ProdGenerator
from refract.prods.models import Prod, ProdRequest, ProdResponse, QueueItem, QueueState, QueueStatus
from refract.prods.queue import queue_reducer
from refract.prods.scheduler import ProdScheduler

__all__ = [
    "Prod",
    "ProdGenerator",
    "ProdRequest",
    "ProdResponse",
    "ProdScheduler",
    "QueueItem",
    "QueueState",
    "QueueStatus",
    "queue_reducer",
]
