from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Union

from quotedesk.negotiation.models import QUOTE_STATUSES, TERMINAL_STATUSES


QUOTE_ACTIONS: List[str] = ["send", "revise", "accept", "reject", "cancel"]


ACTION_LABELS: Dict[str, str] = {
    "send": "Send quote",
    "revise": "Revise quote",
    "accept": "Accept quote",
    "reject": "Reject quote",
    "cancel": "Cancel quote",
}


_ACTION_VERBS: Dict[str, str] = {
    "send": "sent",
    "revise": "revised",
    "accept": "accepted",
    "reject": "rejected",
    "cancel": "cancelled",
}


# status -> action -> {to, roles}. Anything not listed here is denied.
TRANSITION_POLICY: Dict[str, Dict[str, Dict[str, object]]] = {
    "pending": {
        "send": {"to": "sent", "roles": ["vendor", "admin"]},
        "revise": {"to": "revised", "roles": ["vendor", "admin"]},
        "cancel": {"to": "cancelled", "roles": ["admin"]},
    },
    "revised": {
        "send": {"to": "sent", "roles": ["vendor", "admin"]},
        "revise": {"to": "revised", "roles": ["vendor", "admin"]},
        "cancel": {"to": "cancelled", "roles": ["admin"]},
    },
    "sent": {
        "accept": {"to": "accepted", "roles": ["customer"]},
        "reject": {"to": "rejected", "roles": ["customer", "vendor", "admin"]},
        "cancel": {"to": "cancelled", "roles": ["admin"]},
    },
    "accepted": {},
    "rejected": {},
    "cancelled": {},
}


@dataclass(frozen=True)
class Allowed:
    action: str
    target_status: str

    allowed = True
    reason = None


@dataclass(frozen=True)
class Denied:
    action: str
    reason: str

    allowed = False
    target_status = None


Decision = Union[Allowed, Denied]


def _normalize(value: object) -> str:
    return str(value or "").strip().lower()


def is_terminal(status: str | None) -> bool:
    return _normalize(status) in TERMINAL_STATUSES


def action_rule(status: str | None, action: str) -> Dict[str, object] | None:
    return TRANSITION_POLICY.get(_normalize(status), {}).get(_normalize(action))


def target_status(status: str | None, action: str) -> str | None:
    rule = action_rule(status, action)
    if not rule:
        return None
    return str(rule["to"])


def actions_for_status(status: str | None) -> List[str]:
    rules = TRANSITION_POLICY.get(_normalize(status), {})
    return [action for action in QUOTE_ACTIONS if action in rules]


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def _join_roles(roles: List[str]) -> str:
    names = [f"{role}s" for role in roles]
    if len(names) == 1:
        return names[0]
    return ", ".join(names[:-1]) + " or " + names[-1]


def authorize(status: str | None, actor_role: str | None, actor_id: str | None, quote, action: str) -> Decision:
    """Decide whether ``actor`` may perform ``action`` on a quote in ``status``.

    ``quote`` is used only for identity checks (``client_id``/``vendor_id``).
    Pure: reads nothing beyond its arguments and writes nothing. Raises
    ``TypeError`` when called with a non-string action.
    """
    if not isinstance(action, str):
        raise TypeError(f"action must be a string, got {type(action).__name__}")

    normalized_status = _normalize(status)
    normalized_action = _normalize(action)
    role = _normalize(actor_role)
    actor = str(actor_id or "").strip()

    if normalized_action not in QUOTE_ACTIONS:
        return Denied(normalized_action, f"'{action}' is not a quote action.")
    if normalized_status not in QUOTE_STATUSES:
        return Denied(normalized_action, f"Unknown quote status '{status}'.")
    if normalized_status in TERMINAL_STATUSES:
        return Denied(
            normalized_action,
            f"This quote is {normalized_status} and can no longer be changed.",
        )

    rule = action_rule(normalized_status, normalized_action)
    if not rule:
        available = [action_label(name).lower() for name in actions_for_status(normalized_status)]
        hint = f" Available instead: {', '.join(available)}." if available else ""
        return Denied(
            normalized_action,
            f"A {normalized_status} quote cannot be {_ACTION_VERBS[normalized_action]}.{hint}",
        )

    roles = [str(item) for item in rule["roles"]]  # type: ignore[union-attr]
    if role not in roles:
        return Denied(normalized_action, f"Only {_join_roles(roles)} can {normalized_action} this quote.")

    if not actor:
        return Denied(normalized_action, "The actor could not be identified.")
    if role == "customer" and (quote is None or str(getattr(quote, "client_id", "") or "") != actor):
        return Denied(
            normalized_action,
            f"Only the customer who requested this quote can {normalized_action} it.",
        )
    if role == "vendor" and (quote is None or str(getattr(quote, "vendor_id", "") or "") != actor):
        return Denied(
            normalized_action,
            f"Only the vendor assigned to this quote can {normalized_action} it.",
        )

    return Allowed(normalized_action, str(rule["to"]))


def allowed_actions(quote, actor_role: str | None, actor_id: str | None) -> List[str]:
    if quote is None:
        return []
    return [
        action
        for action in QUOTE_ACTIONS
        if authorize(quote.status, actor_role, actor_id, quote, action).allowed
    ]


def policy_bundle() -> Dict[str, object]:
    return {
        "statuses": list(QUOTE_STATUSES),
        "terminal_statuses": sorted(TERMINAL_STATUSES),
        "policy": TRANSITION_POLICY,
        "action_labels": ACTION_LABELS,
    }
