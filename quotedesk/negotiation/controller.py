"""Negotiation Controller.

One instance per client session. It is the only place that combines the
transition authority, the draft buffer and the quote store, and it keeps
the session's list and detail views in step with canonical state.
"""

from __future__ import annotations

import logging
from threading import RLock
from typing import Any, Callable, Dict, List, Tuple

from quotedesk.core.event_bus import TRANSITION_EVENTS, EventBus, get_event_bus
from quotedesk.domain.contracts import ActorIdentity, NegotiationResult
from quotedesk.errors import AppError, NotFound, StorageFailure, SystemError, TransitionDenied, ValidationFailed
from quotedesk.negotiation import draft as draft_buffer
from quotedesk.negotiation.change_feed import ChangeEvent, ChangeFeed, Subscription
from quotedesk.negotiation.draft import Draft
from quotedesk.negotiation.models import Quote, QuoteDetail, QuoteFilter, QuoteItem
from quotedesk.negotiation.totals import compute_total
from quotedesk.negotiation.transition_policy import allowed_actions, authorize
from quotedesk.observability import observe_quote_transition


ListListener = Callable[[Tuple[QuoteDetail, ...]], None]
DetailListener = Callable[[QuoteDetail | None], None]

_RESULT_BY_ERROR = {
    NotFound: "not_found",
    TransitionDenied: "denied",
    ValidationFailed: "invalid",
    StorageFailure: "storage_failure",
}


def _result_label(exc: AppError) -> str:
    for error_type, label in _RESULT_BY_ERROR.items():
        if isinstance(exc, error_type):
            return label
    return "error"


class NegotiationController:
    def __init__(
        self,
        store,
        identity: ActorIdentity,
        change_feed: ChangeFeed | None = None,
        event_bus: EventBus | None = None,
        *,
        list_limit: int = 200,
    ) -> None:
        self.store = store
        self.identity = identity
        self._event_bus = event_bus or get_event_bus()
        self._list_limit = max(1, int(list_limit))
        self._logger = logging.getLogger("quotedesk")
        self._lock = RLock()

        self._list: Tuple[QuoteDetail, ...] | None = None
        self._list_include_items = False
        self._detail: QuoteDetail | None = None
        self._draft: Draft | None = None
        self._stale = False

        self._list_listeners: List[ListListener] = []
        self._detail_listeners: List[DetailListener] = []
        self._subscription: Subscription | None = None
        if change_feed is not None:
            self._subscription = change_feed.subscribe(self._on_change_event)

    # -- session state --------------------------------------------------

    @property
    def current_list(self) -> Tuple[QuoteDetail, ...] | None:
        return self._list

    @property
    def current_detail(self) -> QuoteDetail | None:
        return self._detail

    @property
    def draft(self) -> Draft | None:
        return self._draft

    @property
    def is_stale(self) -> bool:
        return self._stale

    def on_list_refresh(self, callback: ListListener) -> Callable[[], None]:
        with self._lock:
            self._list_listeners.append(callback)

        def remove() -> None:
            with self._lock:
                if callback in self._list_listeners:
                    self._list_listeners.remove(callback)

        return remove

    def on_detail_refresh(self, callback: DetailListener) -> Callable[[], None]:
        with self._lock:
            self._detail_listeners.append(callback)

        def remove() -> None:
            with self._lock:
                if callback in self._detail_listeners:
                    self._detail_listeners.remove(callback)

        return remove

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _run(self, operation: str, fn: Callable[[], Any]) -> NegotiationResult:
        try:
            return NegotiationResult.success(fn())
        except StorageFailure as exc:
            self._stale = True
            self._logger.error(
                "negotiation_storage_failure",
                extra={"operation": operation, "actor_role": self.identity.actor_role, "details": exc.details},
            )
            return NegotiationResult.failure(exc)
        except AppError as exc:
            self._logger.warning(
                "negotiation_operation_failed",
                extra={"operation": operation, "error": exc.code, "actor_role": self.identity.actor_role},
            )
            return NegotiationResult.failure(exc)
        except Exception as exc:
            self._logger.exception(
                "negotiation_operation_crashed",
                extra={"operation": operation, "actor_role": self.identity.actor_role},
            )
            return NegotiationResult.failure(SystemError(details=str(exc)))

    # -- reads ----------------------------------------------------------

    def _scope_filter(self) -> QuoteFilter:
        role = self.identity.actor_role
        actor = self.identity.actor_id
        if role == "customer":
            return QuoteFilter(client_id=actor, limit=self._list_limit)
        if role in {"vendor", "admin"}:
            return QuoteFilter(vendor_id=actor, limit=self._list_limit)
        if role == "super_admin":
            return QuoteFilter(limit=self._list_limit)
        # Unknown roles see nothing.
        return QuoteFilter(client_id="", vendor_id="", limit=0)

    def _can_view(self, quote: Quote) -> bool:
        role = self.identity.actor_role
        actor = self.identity.actor_id
        if role in {"super_admin", "admin"}:
            return True
        if role == "customer":
            return quote.client_id == actor
        if role == "vendor":
            return quote.vendor_id == actor
        return False

    def _build_detail(
        self,
        quote: Quote,
        items: Tuple[QuoteItem, ...],
        names: Dict[str, str],
    ) -> QuoteDetail:
        return QuoteDetail(
            quote=quote,
            items=items,
            client_name=names.get(quote.client_id),
            vendor_name=names.get(quote.vendor_id),
            allowed_actions=tuple(allowed_actions(quote, self.identity.actor_role, self.identity.actor_id)),
        )

    def _read_list(self, include_items: bool) -> Tuple[QuoteDetail, ...]:
        quote_filter = self._scope_filter()
        if quote_filter.limit <= 0:
            return ()
        quotes = self.store.list(quote_filter)
        ids = [quote.id for quote in quotes]
        names = self.store.resolve_display_names(
            [quote.client_id for quote in quotes] + [quote.vendor_id for quote in quotes]
        )
        items_by_quote = self.store.get_items_for(ids) if include_items and ids else {}
        return tuple(self._build_detail(quote, items_by_quote.get(quote.id, ()), names) for quote in quotes)

    def _read_detail(self, quote_id: str) -> QuoteDetail | None:
        quote = self.store.get(quote_id)
        if quote is None:
            return None
        items = self.store.get_items(quote.id)
        names = self.store.resolve_display_names([quote.client_id, quote.vendor_id])
        return self._build_detail(quote, items, names)

    def list_quotes(self, include_items: bool = False) -> NegotiationResult:
        def run() -> Tuple[QuoteDetail, ...]:
            details = self._read_list(include_items)
            with self._lock:
                self._list = details
                self._list_include_items = include_items
                if self._detail is None:
                    self._stale = False
            return details

        return self._run("list_quotes", run)

    def load_detail(self, quote_id: str) -> NegotiationResult:
        def run() -> QuoteDetail:
            detail = self._read_detail(str(quote_id))
            if detail is None or not self._can_view(detail.quote):
                raise NotFound(quote_id)
            with self._lock:
                self._detail = detail
                if self._list is None:
                    self._stale = False
            return detail

        return self._run("load_detail", run)

    def status_history(self, quote_id: str, limit: int = 120) -> NegotiationResult:
        def run() -> List[Dict[str, Any]]:
            quote = self.store.get(str(quote_id))
            if quote is None or not self._can_view(quote):
                raise NotFound(quote_id)
            return self.store.list_status_events(quote.id, limit=limit)

        return self._run("status_history", run)

    # -- draft buffer ---------------------------------------------------

    def _refetch_if_stale(self) -> None:
        if not self._stale:
            return
        self._refresh_views(None)
        self._stale = False

    def begin_edit(self, quote_id: str) -> NegotiationResult:
        def run() -> Draft:
            detail = self._read_detail(str(quote_id))
            if detail is None:
                raise NotFound(quote_id)
            draft = draft_buffer.begin_edit(detail, self.identity)
            with self._lock:
                self._stale = False
                self._detail = detail
                self._draft = draft
            return draft

        return self._run("begin_edit", run)

    def _require_draft(self) -> Draft:
        if self._draft is None:
            raise ValidationFailed("no_draft_open", field="draft")
        return self._draft

    def edit_item(self, item_id: str, field: str, value: Any) -> NegotiationResult:
        def run() -> Draft:
            draft = self._require_draft()
            self._refetch_if_stale()
            updated = draft_buffer.set_item_field(draft, str(item_id), field, value)
            with self._lock:
                self._draft = updated
            return updated

        return self._run("edit_item", run)

    def edit_notes(self, text: Any) -> NegotiationResult:
        def run() -> Draft:
            draft = self._require_draft()
            self._refetch_if_stale()
            updated = draft_buffer.set_notes(draft, text)
            with self._lock:
                self._draft = updated
            return updated

        return self._run("edit_notes", run)

    def discard_edit(self) -> NegotiationResult:
        with self._lock:
            self._draft = None
        return NegotiationResult.success(None)

    # -- transitions ----------------------------------------------------

    def _deny(self, quote: Quote, action: str, reason: str) -> TransitionDenied:
        return TransitionDenied(
            action=action,
            status=quote.status,
            actor_role=self.identity.actor_role,
            reason=reason,
            allowed_actions=allowed_actions(quote, self.identity.actor_role, self.identity.actor_id),
        )

    def _authorized_quote(self, quote_id: str, action: str) -> Tuple[Quote, str]:
        quote = self.store.get(str(quote_id))
        if quote is None:
            raise NotFound(quote_id)
        decision = authorize(quote.status, self.identity.actor_role, self.identity.actor_id, quote, action)
        if not decision.allowed:
            raise self._deny(quote, action, decision.reason)
        return quote, decision.target_status

    def _transition(self, quote_id: str, action: str) -> NegotiationResult:
        def run() -> QuoteDetail:
            with self.store.transaction():
                quote, target = self._authorized_quote(quote_id, action)
                updated = self.store.update_status(quote.id, target)
                self.store.add_status_event(
                    quote.id,
                    from_status=quote.status,
                    to_status=target,
                    reason=action,
                    actor_id=self.identity.actor_id,
                    actor_role=self.identity.actor_role,
                )
                items = self.store.get_items(quote.id)
            self._after_commit(action, quote, updated)
            return self._refreshed_detail(updated, items)

        return self._observed(action, run)

    def _observed(self, action: str, run: Callable[[], Any]) -> NegotiationResult:
        result = self._run(action, run)
        observe_quote_transition(action, "ok" if result.ok else _result_label(result.error))
        return result

    def send(self, quote_id: str) -> NegotiationResult:
        return self._transition(quote_id, "send")

    def accept(self, quote_id: str) -> NegotiationResult:
        return self._transition(quote_id, "accept")

    def reject(self, quote_id: str) -> NegotiationResult:
        return self._transition(quote_id, "reject")

    def cancel(self, quote_id: str) -> NegotiationResult:
        return self._transition(quote_id, "cancel")

    def revise(self, quote_id: str, draft: Draft | None = None) -> NegotiationResult:
        """Commit a draft: changed items, recomputed total, notes and ``revised``.

        The diff is taken against items re-read inside the transaction, so a
        concurrent reviser's commit is overwritten wherever this draft differs
        from it. The header goes last, carrying the new total.
        """

        def run() -> QuoteDetail:
            self._refetch_if_stale()
            pending = draft if draft is not None else self._draft
            if pending is not None and pending.quote_id != str(quote_id):
                raise ValidationFailed("validation_error", field="quote_id")
            if pending is not None:
                pending = draft_buffer.validate_draft(pending)

            with self.store.transaction():
                quote, target = self._authorized_quote(quote_id, "revise")
                committed = QuoteDetail(quote=quote, items=self.store.get_items(quote.id))
                working = pending or draft_buffer.begin_edit(committed, self.identity)
                delta = draft_buffer.diff(committed, working)

                if delta.changed_items:
                    self.store.upsert_items(quote.id, delta.changed_items)
                changes = {change.item_id: change for change in delta.changed_items}
                new_items = tuple(
                    QuoteItem(
                        id=item.id,
                        quote_id=item.quote_id,
                        product_name=item.product_name,
                        quantity=changes[item.id].quantity if item.id in changes else item.quantity,
                        price=changes[item.id].price if item.id in changes else item.price,
                    )
                    for item in committed.items
                )
                notes = working.notes if delta.notes_changed else quote.notes
                updated = self.store.update_header(
                    quote.id,
                    notes=notes,
                    total_amount=compute_total(new_items),
                    status=target,
                )
                self.store.add_status_event(
                    quote.id,
                    from_status=quote.status,
                    to_status=target,
                    reason=f"revise: {len(delta.changed_items)} item(s) changed",
                    actor_id=self.identity.actor_id,
                    actor_role=self.identity.actor_role,
                )

            with self._lock:
                if self._draft is not None and self._draft.quote_id == quote.id:
                    self._draft = None
            self._after_commit(
                "revise",
                quote,
                updated,
                changed_items=len(delta.changed_items),
                notes_changed=delta.notes_changed,
                total_amount=str(updated.total_amount),
            )
            return self._refreshed_detail(updated, new_items)

        return self._observed("revise", run)

    def _after_commit(self, action: str, before: Quote, after: Quote, **extra: Any) -> None:
        self._logger.info(
            "quote_transition_applied",
            extra={
                "quote_id": after.id,
                "action": action,
                "from_status": before.status,
                "to_status": after.status,
                "actor_role": self.identity.actor_role,
            },
        )
        event_type = TRANSITION_EVENTS[action]
        self._event_bus.publish(
            event_type(
                quote_id=after.id,
                quote_number=after.quote_number,
                from_status=before.status,
                to_status=after.status,
                actor_id=self.identity.actor_id,
                actor_role=self.identity.actor_role,
                **extra,
            )
        )

    def _refreshed_detail(self, quote: Quote, items: Tuple[QuoteItem, ...]) -> QuoteDetail:
        """Bring the views up to date after a commit and return the fresh detail.

        A storage failure here does not undo the commit, so the result is still
        a success; the views are only marked stale.
        """
        try:
            self._refresh_views(quote.id)
            fresh = self._read_detail(quote.id)
            if fresh is not None:
                return fresh
        except StorageFailure:
            self._stale = True
            self._logger.warning("negotiation_refresh_failed", extra={"quote_id": quote.id})
        return self._build_detail(quote, items, {})

    # -- reconciliation -------------------------------------------------

    def _on_change_event(self, event: ChangeEvent) -> None:
        self.handle_change(event)

    def handle_change(self, event: ChangeEvent | None = None) -> NegotiationResult:
        """Re-read canonical state and fire listeners only for views that changed.

        Payload deltas are never applied, so duplicate or reordered events
        converge on the same state and fire nothing the second time.
        """
        quote_id = event.quote_id if event is not None else None
        return self._run("handle_change", lambda: self._refresh_views(quote_id))

    def _refresh_views(self, quote_id: str | None) -> Dict[str, bool]:
        with self._lock:
            list_loaded = self._list is not None
            include_items = self._list_include_items
            detail_id = self._detail.id if self._detail is not None else None

        list_changed = False
        detail_changed = False
        fresh_list: Tuple[QuoteDetail, ...] | None = None
        fresh_detail: QuoteDetail | None = None

        if list_loaded:
            fresh_list = self._read_list(include_items)
        if detail_id is not None and (quote_id is None or quote_id == detail_id):
            fresh_detail = self._read_detail(detail_id)
            if fresh_detail is not None and not self._can_view(fresh_detail.quote):
                fresh_detail = None

        with self._lock:
            if fresh_list is not None and fresh_list != self._list:
                self._list = fresh_list
                list_changed = True
            if detail_id is not None and (quote_id is None or quote_id == detail_id):
                if self._detail is not None and self._detail.id == detail_id and fresh_detail != self._detail:
                    self._detail = fresh_detail
                    detail_changed = True
            self._stale = False
            list_listeners = list(self._list_listeners) if list_changed else []
            detail_listeners = list(self._detail_listeners) if detail_changed else []
            current_list = self._list
            current_detail = self._detail

        for listener in list_listeners:
            self._notify(listener, current_list)
        for listener in detail_listeners:
            self._notify(listener, current_detail)
        return {"list_changed": list_changed, "detail_changed": detail_changed}

    def _notify(self, listener: Callable[[Any], None], value: Any) -> None:
        try:
            listener(value)
        except Exception:  # noqa: BLE001
            self._logger.exception("negotiation_listener_failed")
