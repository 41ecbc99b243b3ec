import unittest
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from quotedesk.core import EventBus, QuoteAccepted, QuoteRevised
from quotedesk.errors import NotFound, StorageFailure, SystemError, TransitionDenied, ValidationFailed
from quotedesk.infrastructure.quote_store import QuoteStore
from quotedesk.negotiation.change_feed import ChangeEvent, ChangeFeed
from quotedesk.negotiation.controller import NegotiationController
from quotedesk.observability import metrics_snapshot, reset_metrics_for_tests
from tests.helpers.quote_fixtures import (
    ADMIN,
    CUSTOMER,
    OTHER_CUSTOMER,
    OTHER_VENDOR,
    SUPER_ADMIN,
    VENDOR,
    TickingClock,
    line,
    seed_profiles,
    seed_quote,
)
from tests.helpers.temp_db import TempDbSandbox


class _FlakyStore(QuoteStore):
    """Store whose header writes can be made to fail on demand."""

    fail_header_writes = False

    def update_header(self, quote_id, **kwargs):
        if self.fail_header_writes:
            raise StorageFailure(details="update_header failed: OperationalError")
        return super().update_header(quote_id, **kwargs)


class _BrokenItemsStore(QuoteStore):
    """Store whose item reads fail with a non-storage error."""

    def get_items(self, quote_id):
        raise KeyError(quote_id)


class NegotiationControllerTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="negotiation")
        self.db = self._temp_db.connect()
        self.clock = TickingClock()
        self.feed = ChangeFeed()
        self.bus = EventBus()
        self.store = QuoteStore(self.db, change_feed=self.feed, clock=self.clock)
        seed_profiles(self.store)

    def tearDown(self) -> None:
        self._temp_db.cleanup()

    def _controller(self, identity, *, store=None, subscribe: bool = False) -> NegotiationController:
        controller = NegotiationController(
            store or self.store,
            identity,
            change_feed=self.feed if subscribe else None,
            event_bus=self.bus,
        )
        self.addCleanup(controller.close)
        return controller

    def _single_line_quote(self):
        return seed_quote(self.store, items=[line("Disc harrow blade", 2, "10.00")])

    # -- lifecycle scenarios ----------------------------------------------

    def test_full_negotiation_lifecycle(self) -> None:
        quote = self._single_line_quote()
        item_id = self.store.get_items(quote.id)[0].id
        vendor = self._controller(VENDOR)

        draft = vendor.begin_edit(quote.id)
        self.assertTrue(draft.ok)
        edited = vendor.edit_item(item_id, "quantity", 5)
        self.assertTrue(edited.ok)
        self.assertEqual(edited.value.total_amount, Decimal("50.00"))

        revised = vendor.revise(quote.id)
        self.assertTrue(revised.ok, revised.error)
        self.assertEqual(revised.value.status, "revised")
        self.assertEqual(revised.value.total_amount, Decimal("50.00"))
        self.assertIsNone(vendor.draft)

        sent = vendor.send(quote.id)
        self.assertTrue(sent.ok, sent.error)
        self.assertEqual(sent.value.status, "sent")
        self.assertEqual(sent.value.total_amount, Decimal("50.00"))
        self.assertEqual(sent.value.items[0].quantity, 5)

        intruder = self._controller(OTHER_CUSTOMER).accept(quote.id)
        self.assertFalse(intruder.ok)
        self.assertIsInstance(intruder.error, TransitionDenied)
        self.assertEqual(self.store.get(quote.id).status, "sent")

        accepted = self._controller(CUSTOMER).accept(quote.id)
        self.assertTrue(accepted.ok, accepted.error)
        self.assertEqual(accepted.value.status, "accepted")
        self.assertEqual(accepted.value.allowed_actions, ())

        for identity in (CUSTOMER, VENDOR, ADMIN):
            rejected = self._controller(identity).reject(quote.id)
            self.assertFalse(rejected.ok)
            self.assertIsInstance(rejected.error, TransitionDenied)

        history = self._controller(CUSTOMER).status_history(quote.id)
        self.assertTrue(history.ok)
        self.assertEqual([event["to_status"] for event in history.value], ["revised", "sent", "accepted"])

    def test_quote_past_valid_until_still_negotiates(self) -> None:
        quote = self.store.create_quote(
            client_id=CUSTOMER.actor_id,
            vendor_id=VENDOR.actor_id,
            items=[line("Seed drill disc", 4, "12.50")],
            valid_until=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        customer = self._controller(CUSTOMER)

        detail = customer.load_detail(quote.id)
        self.assertTrue(detail.ok, detail.error)
        self.assertTrue(detail.value.quote.is_expired())
        self.assertEqual(detail.value.quote.status, "pending")

        sent = self._controller(VENDOR).send(quote.id)
        self.assertTrue(sent.ok, sent.error)
        accepted = customer.accept(quote.id)
        self.assertTrue(accepted.ok, accepted.error)
        self.assertEqual(accepted.value.status, "accepted")
        self.assertEqual(self.store.get(quote.id).status, "accepted")

    def test_concurrent_revisions_last_commit_wins(self) -> None:
        quote = seed_quote(self.store)
        first_item, second_item = self.store.get_items(quote.id)

        other_db = self._temp_db.connect()
        other_store = QuoteStore(other_db, change_feed=self.feed, clock=self.clock)
        session_one = self._controller(VENDOR, subscribe=True)
        session_two = self._controller(ADMIN, store=other_store, subscribe=True)

        self.assertTrue(session_one.begin_edit(quote.id).ok)
        self.assertTrue(session_two.begin_edit(quote.id).ok)
        session_one.edit_item(first_item.id, "quantity", 3)
        session_one.edit_item(second_item.id, "price", "8.00")
        session_two.edit_item(first_item.id, "quantity", 7)

        self.assertTrue(session_one.revise(quote.id).ok)
        # The first commit reaches the second session without touching its draft.
        self.assertEqual(session_two.current_detail.items[0].quantity, 3)
        self.assertEqual(session_two.draft.item(first_item.id).quantity, 7)

        second = session_two.revise(quote.id)
        self.assertTrue(second.ok, second.error)

        items = {item.id: item for item in self.store.get_items(quote.id)}
        self.assertEqual(items[first_item.id].quantity, 7)
        self.assertEqual(items[second_item.id].price, Decimal("5.50"))
        self.assertEqual(self.store.get(quote.id).total_amount, Decimal("75.50"))

    def test_revise_with_unchanged_draft_is_idempotent(self) -> None:
        quote = seed_quote(self.store, notes="Original")
        vendor = self._controller(VENDOR)

        first = vendor.revise(quote.id)
        second = vendor.revise(quote.id)

        self.assertTrue(first.ok and second.ok)
        self.assertEqual(second.value.status, "revised")
        self.assertEqual(second.value.total_amount, Decimal("25.50"))
        self.assertEqual(second.value.quote.notes, "Original")
        self.assertEqual(
            [(item.quantity, item.price) for item in first.value.items],
            [(item.quantity, item.price) for item in second.value.items],
        )

    def test_revise_updates_notes_and_publishes_domain_event(self) -> None:
        quote = seed_quote(self.store)
        first_item = self.store.get_items(quote.id)[0]
        received = []
        self.bus.subscribe(QuoteRevised, received.append)

        vendor = self._controller(VENDOR)
        vendor.begin_edit(quote.id)
        vendor.edit_item(first_item.id, "price", "12.00")
        vendor.edit_notes("Prices valid for 15 days")
        result = vendor.revise(quote.id)

        self.assertTrue(result.ok, result.error)
        self.assertEqual(result.value.quote.notes, "Prices valid for 15 days")
        self.assertEqual(result.value.total_amount, Decimal("29.50"))
        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].changed_items, 1)
        self.assertTrue(received[0].notes_changed)
        self.assertEqual(received[0].total_amount, "29.50")
        self.assertEqual(metrics_snapshot()["quote_transitions"]["by_action_result"]["revise:ok"], 1)

    def test_accept_publishes_domain_event(self) -> None:
        quote = seed_quote(self.store, status="sent")
        received = []
        self.bus.subscribe(QuoteAccepted, received.append)

        self.assertTrue(self._controller(CUSTOMER).accept(quote.id).ok)

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].from_status, "sent")
        self.assertEqual(received[0].to_status, "accepted")
        self.assertEqual(received[0].actor_id, CUSTOMER.actor_id)

    def test_reject_is_open_to_both_parties_from_sent(self) -> None:
        by_customer = seed_quote(self.store, status="sent")
        by_vendor = seed_quote(self.store, status="sent")

        self.assertEqual(self._controller(CUSTOMER).reject(by_customer.id).value.status, "rejected")
        self.assertEqual(self._controller(VENDOR).reject(by_vendor.id).value.status, "rejected")

    def test_cancel_is_admin_only(self) -> None:
        quote = seed_quote(self.store)

        denied = self._controller(VENDOR).cancel(quote.id)
        self.assertIsInstance(denied.error, TransitionDenied)

        cancelled = self._controller(ADMIN).cancel(quote.id)
        self.assertTrue(cancelled.ok)
        self.assertEqual(cancelled.value.status, "cancelled")

    # -- authorization and visibility ------------------------------------

    def test_terminal_quotes_are_immutable(self) -> None:
        for status in ("accepted", "rejected", "cancelled"):
            quote = seed_quote(self.store, status=status)
            before = self.store.get(quote.id)
            admin = self._controller(ADMIN)
            for action in ("send", "accept", "reject", "cancel", "revise"):
                result = getattr(admin, action)(quote.id)
                self.assertFalse(result.ok, f"{action} on {status}")
                self.assertIsInstance(result.error, TransitionDenied)
            self.assertFalse(admin.begin_edit(quote.id).ok)
            self.assertEqual(self.store.get(quote.id), before)

    def test_unknown_quote_is_not_found(self) -> None:
        vendor = self._controller(VENDOR)
        for result in (vendor.send("missing"), vendor.revise("missing"), vendor.load_detail("missing")):
            self.assertFalse(result.ok)
            self.assertIsInstance(result.error, NotFound)
        self.assertIsInstance(vendor.begin_edit("missing").error, NotFound)

    def test_other_vendor_cannot_act_on_quote(self) -> None:
        quote = seed_quote(self.store)
        result = self._controller(OTHER_VENDOR).send(quote.id)
        self.assertIsInstance(result.error, TransitionDenied)
        self.assertEqual(self.store.get(quote.id).status, "pending")
        self.assertEqual(metrics_snapshot()["quote_transitions"]["by_action_result"]["send:denied"], 1)

    def test_super_admin_is_read_only(self) -> None:
        quote = seed_quote(self.store)
        oversight = self._controller(SUPER_ADMIN)

        detail = oversight.load_detail(quote.id)
        self.assertTrue(detail.ok)
        self.assertEqual(detail.value.allowed_actions, ())
        for action in ("send", "revise", "cancel"):
            self.assertIsInstance(getattr(oversight, action)(quote.id).error, TransitionDenied)

    def test_list_scoping_per_role(self) -> None:
        mine = seed_quote(self.store)
        other_client = seed_quote(self.store, client_id=OTHER_CUSTOMER.actor_id)
        other_vendor = seed_quote(self.store, vendor_id=OTHER_VENDOR.actor_id)
        for_admin = seed_quote(self.store, vendor_id=ADMIN.actor_id)

        def ids(identity):
            result = self._controller(identity).list_quotes()
            self.assertTrue(result.ok, result.error)
            return {detail.id for detail in result.value}

        self.assertEqual(ids(CUSTOMER), {mine.id, other_vendor.id, for_admin.id})
        self.assertEqual(ids(OTHER_CUSTOMER), {other_client.id})
        self.assertEqual(ids(VENDOR), {mine.id, other_client.id})
        self.assertEqual(ids(OTHER_VENDOR), {other_vendor.id})
        self.assertEqual(ids(ADMIN), {for_admin.id})
        self.assertEqual(ids(SUPER_ADMIN), {mine.id, other_client.id, other_vendor.id, for_admin.id})

    def test_list_carries_names_actions_and_optional_items(self) -> None:
        quote = seed_quote(self.store)
        vendor = self._controller(VENDOR)

        listed = vendor.list_quotes().value
        self.assertEqual(listed[0].client_name, "Fazenda Boa Vista")
        self.assertEqual(listed[0].vendor_name, "AgroPecas")
        self.assertEqual(listed[0].allowed_actions, ("send", "revise"))
        self.assertEqual(listed[0].items, ())

        with_items = vendor.list_quotes(include_items=True).value
        self.assertEqual(len(with_items[0].items), 2)
        self.assertEqual(with_items[0].id, quote.id)

    def test_detail_outside_scope_is_not_found(self) -> None:
        quote = seed_quote(self.store)
        self.assertIsInstance(self._controller(OTHER_CUSTOMER).load_detail(quote.id).error, NotFound)
        self.assertIsInstance(self._controller(OTHER_VENDOR).load_detail(quote.id).error, NotFound)
        self.assertIsInstance(self._controller(OTHER_VENDOR).status_history(quote.id).error, NotFound)
        self.assertTrue(self._controller(CUSTOMER).load_detail(quote.id).ok)

    # -- draft handling ----------------------------------------------------

    def test_edits_without_draft_are_rejected(self) -> None:
        vendor = self._controller(VENDOR)
        result = vendor.edit_item("any", "quantity", 1)
        self.assertIsInstance(result.error, ValidationFailed)
        self.assertEqual(result.error.message_key, "no_draft_open")

    def test_invalid_edit_keeps_previous_draft(self) -> None:
        quote = seed_quote(self.store)
        item_id = self.store.get_items(quote.id)[0].id
        vendor = self._controller(VENDOR)
        vendor.begin_edit(quote.id)
        before = vendor.draft

        result = vendor.edit_item(item_id, "quantity", 0)

        self.assertIsInstance(result.error, ValidationFailed)
        self.assertEqual(vendor.draft, before)

    def _assert_caller_draft_rejected(self, field: str, value, message_key: str) -> None:
        quote = self._single_line_quote()
        item_id = self.store.get_items(quote.id)[0].id
        vendor = self._controller(VENDOR)
        draft = vendor.begin_edit(quote.id).value
        tampered = replace(
            draft,
            items=tuple(replace(item, **{field: value}) if item.id == item_id else item for item in draft.items),
        )

        result = vendor.revise(quote.id, tampered)

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, ValidationFailed)
        self.assertEqual(result.error.message_key, message_key)
        self.assertFalse(vendor.is_stale)
        stored = self.store.get(quote.id)
        self.assertEqual(stored.status, "pending")
        self.assertEqual(stored.total_amount, Decimal("20.00"))
        committed = self.store.get_items(quote.id)[0]
        self.assertEqual((committed.quantity, committed.price), (2, Decimal("10.00")))
        self.assertEqual(self.store.list_status_events(quote.id), [])

    def test_revise_rejects_caller_draft_with_negative_price(self) -> None:
        self._assert_caller_draft_rejected("price", Decimal("-10.00"), "price_invalid")

    def test_revise_rejects_caller_draft_with_negative_quantity(self) -> None:
        self._assert_caller_draft_rejected("quantity", -3, "quantity_invalid")

    def test_revise_rejects_caller_draft_with_fractional_quantity(self) -> None:
        self._assert_caller_draft_rejected("quantity", 2.5, "quantity_invalid")

    def test_unexpected_error_becomes_failed_result(self) -> None:
        quote = seed_quote(self.store)
        broken = _BrokenItemsStore(self.db, change_feed=self.feed, clock=self.clock)
        vendor = self._controller(VENDOR, store=broken)

        with self.assertLogs("quotedesk", level="ERROR"):
            result = vendor.load_detail(quote.id)

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, SystemError)
        self.assertEqual(result.error.code, "system_error")
        self.assertFalse(vendor.is_stale)

    def test_discard_edit_drops_draft(self) -> None:
        quote = seed_quote(self.store)
        vendor = self._controller(VENDOR)
        vendor.begin_edit(quote.id)
        self.assertTrue(vendor.discard_edit().ok)
        self.assertIsNone(vendor.draft)
        self.assertEqual(self.store.get(quote.id).status, "pending")

    def test_storage_failure_keeps_draft_and_marks_views_stale(self) -> None:
        quote = seed_quote(self.store)
        item_id = self.store.get_items(quote.id)[0].id
        flaky = _FlakyStore(self.db, change_feed=self.feed, clock=self.clock)
        vendor = self._controller(VENDOR, store=flaky)

        vendor.begin_edit(quote.id)
        vendor.edit_item(item_id, "quantity", 9)
        kept = vendor.draft

        flaky.fail_header_writes = True
        failed = vendor.revise(quote.id)

        self.assertFalse(failed.ok)
        self.assertIsInstance(failed.error, StorageFailure)
        self.assertTrue(failed.error.retryable)
        self.assertTrue(vendor.is_stale)
        self.assertEqual(vendor.draft, kept)
        # Item writes were rolled back together with the failed header write.
        self.assertEqual(self.store.get_items(quote.id)[0].quantity, 2)
        self.assertEqual(self.store.get(quote.id).status, "pending")

        flaky.fail_header_writes = False
        retried = vendor.edit_item(item_id, "price", "11.00")
        self.assertTrue(retried.ok)
        self.assertFalse(vendor.is_stale)

        saved = vendor.revise(quote.id)
        self.assertTrue(saved.ok, saved.error)
        self.assertEqual(saved.value.total_amount, Decimal("104.50"))

    def test_driver_failure_on_read_marks_stale(self) -> None:
        other_db = self._temp_db.connect()
        vendor = self._controller(VENDOR, store=QuoteStore(other_db, clock=self.clock))
        other_db.close()

        result = vendor.list_quotes()
        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, StorageFailure)
        self.assertTrue(vendor.is_stale)

    # -- reconciliation ----------------------------------------------------

    def test_reconciliation_fires_listeners_once_per_real_change(self) -> None:
        quote = seed_quote(self.store)
        watcher = self._controller(CUSTOMER, subscribe=True)
        watcher.list_quotes()
        watcher.load_detail(quote.id)

        list_updates, detail_updates = [], []
        watcher.on_list_refresh(list_updates.append)
        watcher.on_detail_refresh(detail_updates.append)

        self.assertTrue(self._controller(VENDOR).send(quote.id).ok)

        self.assertEqual(len(list_updates), 1)
        self.assertEqual(len(detail_updates), 1)
        self.assertEqual(detail_updates[0].status, "sent")
        self.assertEqual(watcher.current_list[0].allowed_actions, ("accept", "reject"))

        # Duplicate and replayed notifications converge without further callbacks.
        event = ChangeEvent(table="quotes", event_type="update", affected_id=quote.id)
        self.feed.publish(event)
        self.feed.publish(event)
        watcher.handle_change()

        self.assertEqual(len(list_updates), 1)
        self.assertEqual(len(detail_updates), 1)

    def test_listener_removal_and_close(self) -> None:
        quote = seed_quote(self.store)
        watcher = self._controller(VENDOR, subscribe=True)
        watcher.list_quotes()
        updates = []
        remove = watcher.on_list_refresh(updates.append)
        remove()

        self.assertEqual(self.feed.subscriber_count, 1)
        watcher.close()
        self.assertEqual(self.feed.subscriber_count, 0)

        self._controller(VENDOR).send(quote.id)
        self.assertEqual(updates, [])

    def test_failing_listener_does_not_break_reconciliation(self) -> None:
        quote = seed_quote(self.store)
        watcher = self._controller(CUSTOMER, subscribe=True)
        watcher.load_detail(quote.id)
        received = []

        def broken(_detail):
            raise RuntimeError("render failed")

        watcher.on_detail_refresh(broken)
        watcher.on_detail_refresh(received.append)
        with self.assertLogs("quotedesk", level="ERROR"):
            self._controller(VENDOR).send(quote.id)

        self.assertEqual(len(received), 1)
        self.assertEqual(watcher.current_detail.status, "sent")


if __name__ == "__main__":
    unittest.main()
