from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, g, jsonify, request

from quotedesk.core.event_bus import get_event_bus
from quotedesk.db import get_db
from quotedesk.domain.contracts import ActorIdentity, NegotiationResult
from quotedesk.errors import NotFound, ValidationFailed
from quotedesk.infrastructure.quote_store import QuoteStore
from quotedesk.negotiation.change_feed import ChangeFeed
from quotedesk.negotiation.controller import NegotiationController
from quotedesk.negotiation.critical_actions import get_critical_action, resolve_confirmation
from quotedesk.negotiation.draft import draft_from_payload
from quotedesk.negotiation.models import QuoteDetail
from quotedesk.negotiation.quote_requests import QuoteRequestService, parse_quote_request
from quotedesk.policies import current_identity
from quotedesk.ui_strings import (
    confirm_message,
    frontend_bundle,
    get_ui_text,
    status_badge,
    status_label,
    success_message,
)


quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")


_SUCCESS_KEYS = {
    "send": "quote_sent",
    "revise": "quote_revised",
    "accept": "quote_accepted",
    "reject": "quote_rejected",
    "cancel": "quote_cancelled",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def current_change_feed() -> ChangeFeed:
    return current_app.extensions["quotedesk_change_feed"]


def _store() -> QuoteStore:
    return QuoteStore(
        get_db(),
        change_feed=current_change_feed(),
        quote_number_prefix=current_app.config.get("QUOTE_NUMBER_PREFIX", "QT"),
    )


def _controller(identity: ActorIdentity) -> NegotiationController:
    return NegotiationController(
        _store(),
        identity,
        event_bus=get_event_bus(),
        list_limit=int(current_app.config.get("QUOTE_LIST_LIMIT", 200)),
    )


def _unwrap(result: NegotiationResult) -> Any:
    if not result.ok:
        raise result.error
    return result.value


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationFailed("validation_error", field="body")
    return payload


def _detail_payload(detail: QuoteDetail, *, include_items: bool = True) -> Dict[str, Any]:
    payload = detail.to_payload(include_items=include_items)
    payload["status_label"] = status_label(detail.status)
    payload["status_badge"] = status_badge(detail.status)
    return payload


def _critical_confirmation_details(action: str) -> dict | None:
    meta = get_critical_action(action)
    if not meta:
        return None

    confirm_key = meta.get("confirm_message_key") or action
    impact_key = meta.get("impact_text_key") or f"impact.{action}"
    return {
        "action_key": meta.get("action_key") or action,
        "confirm_key": confirm_key,
        "confirm_message": confirm_message(confirm_key, confirm_key),
        "impact_key": impact_key,
        "impact": get_ui_text(impact_key, impact_key),
    }


def _require_critical_confirmation(action: str, *, quote_id: str, identity: ActorIdentity, payload: dict) -> None:
    if not get_critical_action(action):
        return

    confirmed, mode = resolve_confirmation(request, payload)
    if not confirmed:
        raise ValidationFailed(
            code="confirmation_required",
            message_key="confirmation_required",
            payload={
                "action": action,
                "confirmation": _critical_confirmation_details(action),
            },
        )

    current_app.logger.info(
        "confirmation_event",
        extra={
            "request_id": getattr(g, "request_id", None) or "n/a",
            "actor_id": identity.actor_id,
            "actor_role": identity.actor_role,
            "action": action,
            "entity": "quote",
            "entity_id": quote_id,
            "mode": mode,
        },
    )


@quotes_bp.get("")
def list_quotes():
    identity = current_identity()
    include_items = str(request.args.get("include_items") or "").strip().lower() in _TRUE_VALUES
    details = _unwrap(_controller(identity).list_quotes(include_items=include_items))
    return jsonify(
        {
            "quotes": [_detail_payload(detail, include_items=include_items) for detail in details],
            "count": len(details),
        }
    )


@quotes_bp.post("")
def request_quote():
    identity = current_identity()
    request_input = parse_quote_request(_json_body())
    output = QuoteRequestService(_store(), event_bus=get_event_bus()).create_quote_request(identity, request_input)
    payload = dict(output.payload)
    payload["status_label"] = status_label(payload.get("status"))
    payload["message"] = success_message("quote_requested")
    return jsonify(payload), output.status_code


@quotes_bp.get("/policy")
def quote_policy():
    return jsonify(frontend_bundle())


@quotes_bp.get("/<quote_id>")
def quote_detail(quote_id: str):
    identity = current_identity()
    detail = _unwrap(_controller(identity).load_detail(quote_id))
    return jsonify(_detail_payload(detail))


@quotes_bp.get("/<quote_id>/history")
def quote_history(quote_id: str):
    identity = current_identity()
    limit = int(current_app.config.get("QUOTE_HISTORY_LIMIT", 120))
    events = _unwrap(_controller(identity).status_history(quote_id, limit=limit))
    for event in events:
        event["to_status_label"] = status_label(event.get("to_status"))
    return jsonify({"quote_id": quote_id, "events": events})


@quotes_bp.post("/<quote_id>/revise")
def revise_quote(quote_id: str):
    identity = current_identity()
    payload = _json_body()
    controller = _controller(identity)
    draft = _unwrap(controller.begin_edit(quote_id))
    committed = controller.current_detail
    if committed is None:
        raise NotFound(quote_id)
    if payload.get("items") is not None or "notes" in payload:
        draft = draft_from_payload(committed, payload)
    detail = _unwrap(controller.revise(quote_id, draft))
    return jsonify({"quote": _detail_payload(detail), "message": success_message(_SUCCESS_KEYS["revise"])})


@quotes_bp.post("/<quote_id>/<action>")
def transition_quote(quote_id: str, action: str):
    if action not in {"send", "accept", "reject", "cancel"}:
        raise ValidationFailed("validation_error", field="action", payload={"action": action})
    identity = current_identity()
    payload = _json_body()
    _require_critical_confirmation(action, quote_id=quote_id, identity=identity, payload=payload)
    controller = _controller(identity)
    detail = _unwrap(getattr(controller, action)(quote_id))
    return jsonify({"quote": _detail_payload(detail), "message": success_message(_SUCCESS_KEYS[action])})
