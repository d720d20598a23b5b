"""Pure reducer for the prod request queue.

Every status change goes through :func:`queue_reducer`, which never
mutates its input. Enqueuing keeps only the newest pending item: older
pending items are dropped, items already processing are left alone, and
insertion order is preserved for everything that stays.
"""

from __future__ import annotations

from refract.prods.models import (
    ClearQueue,
    CompleteProcessing,
    Enqueue,
    FailProcessing,
    QueueAction,
    QueueItem,
    QueueState,
    QueueStatus,
    SetProcessing,
    StartProcessing,
)


def _any_processing(items: list[QueueItem]) -> bool:
    return any(item.status == QueueStatus.PROCESSING for item in items)


def _remove(state: QueueState, item_id: str) -> QueueState:
    remaining = [item for item in state.items if item.id != item_id]
    return QueueState(items=remaining, is_processing=_any_processing(remaining))


def queue_reducer(state: QueueState, action: QueueAction) -> QueueState:
    """Return the queue state after applying *action*."""
    if isinstance(action, Enqueue):
        kept = [item for item in state.items if item.status != QueueStatus.PENDING]
        new_item = action.item.model_copy(update={"status": QueueStatus.PENDING})
        return QueueState(items=[*kept, new_item], is_processing=state.is_processing)

    if isinstance(action, StartProcessing):
        items = [
            item.model_copy(update={"status": QueueStatus.PROCESSING})
            if item.id == action.item_id
            else item
            for item in state.items
        ]
        return QueueState(items=items, is_processing=True)

    if isinstance(action, (CompleteProcessing, FailProcessing)):
        return _remove(state, action.item_id)

    if isinstance(action, SetProcessing):
        return QueueState(items=list(state.items), is_processing=action.value)

    if isinstance(action, ClearQueue):
        return QueueState()

    raise TypeError(f"Unknown queue action: {action!r}")
