from __future__ import annotations

from typing import Any

from effectkit.protocol.models import Action, EffectDescriptor, RequestSpec, RetryPolicyOverride

# Item lifecycle driven by the actions below:
#   item/add           -> "pending"   (optimistic)
#   item/add/commit    -> "synced"
#   item/add/rollback  -> removed


def initial_state() -> dict[str, Any]:
    return {"items": {}, "log": []}


def items_reducer(state: dict[str, Any] | None, action: Action) -> dict[str, Any]:
    state = state or initial_state()
    items = dict(state["items"])
    item_id = (action.payload or {}).get("id")
    if action.kind == "item/add":
        items[item_id] = "pending"
    elif action.kind == "item/add/commit":
        items[item_id] = "synced"
    elif action.kind == "item/add/rollback":
        items.pop(item_id, None)
    return {"items": items, "log": [*state["log"], f"{action.kind}:{item_id}"]}


def add_item(
    item_id: str,
    *,
    key: str | None = None,
    retry: RetryPolicyOverride | None = None,
    timeout_ms: int | None = None,
    verb: str = "PUT",
) -> Action:
    return Action(
        kind="item/add",
        payload={"id": item_id},
        effect=EffectDescriptor(
            idempotency_key=key or f"add-{item_id}",
            request=RequestSpec(target=f"/items/{item_id}", verb=verb, body={"id": item_id}),
            commit_action=Action(kind="item/add/commit", payload={"id": item_id}),
            rollback_action=Action(kind="item/add/rollback", payload={"id": item_id}),
            retry_policy=retry,
            timeout_ms=timeout_ms,
        ),
    )


def resolutions(state: dict[str, Any]) -> list[str]:
    """Commit/rollback entries of the reducer log, in dispatch order."""
    return [e for e in state["log"] if e.startswith(("item/add/commit", "item/add/rollback"))]


class FlakyReducer:
    """Wraps a reducer and raises for the first `failures` actions of `kind`."""

    def __init__(self, inner, *, kind: str, failures: int) -> None:
        self.inner = inner
        self.kind = kind
        self.remaining = failures
        self.raised = 0

    def __call__(self, state, action: Action):
        if action.kind == self.kind and self.remaining > 0:
            self.remaining -= 1
            self.raised += 1
            raise RuntimeError(f"reducer bug on {action.kind}")
        return self.inner(state, action)
