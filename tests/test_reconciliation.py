# tests/test_reconciliation.py
from decimal import Decimal

import pytest

from exceptions import ReconciliationDeferred, TenantIsolationViolation
from models import PaymentLink, PaymentLinkStatus, PaymentProvider, Transaction, TransactionStatus
from services.reconciliation_service import ReconciliationService, can_transition
from services.tenant_context import tenant_scope
from services.transaction_service import TransactionService
from services.webhook_events import parse_event
from tests.conftest import create_config, create_link, short_session


@pytest.fixture
def stripe_link(session_factory, vault):
     config = create_config(session_factory, vault, "tenant-a")
     return create_link(session_factory, config, provider_link_id="plink_1")


@pytest.fixture
def paypal_link(session_factory, vault):
     config = create_config(session_factory, vault, "tenant-a", provider=PaymentProvider.PAYPAL)
     return create_link(session_factory, config, provider_link_id="ORDER-1")


def stripe_intent(event_type, link_id, intent_id="pi_1", event_id="evt_1", amount=1000):
     return parse_event(PaymentProvider.STRIPE, {
          "id": event_id,
          "type": event_type,
          "data": {"object": {
               "id": intent_id,
               "amount": amount,
               "amount_received": amount,
               "currency": "jpy",
               "metadata": {"link_id": link_id},
          }},
     })


def stripe_refund(link_id, intent_id="pi_1", refund_id="re_1"):
     return parse_event(PaymentProvider.STRIPE, {
          "id": f"evt_{refund_id}",
          "type": "charge.refunded",
          "data": {"object": {
               "id": "ch_1",
               "payment_intent": intent_id,
               "amount_refunded": 1000,
               "currency": "jpy",
               "metadata": {"link_id": link_id},
               "refunds": {"data": [{"id": refund_id}]},
          }},
     })


def paypal_approved(link_id):
     return parse_event(PaymentProvider.PAYPAL, {
          "id": "WH-APPROVED",
          "event_type": "CHECKOUT.ORDER.APPROVED",
          "resource": {
               "id": "ORDER-1",
               "status": "APPROVED",
               "purchase_units": [{"custom_id": link_id, "amount": {"value": "1000", "currency_code": "JPY"}}],
               "payer": {"email_address": "buyer@example.com", "name": {"given_name": "Ann", "surname": "Lee"}},
          },
     })


def paypal_captured(link_id):
     return parse_event(PaymentProvider.PAYPAL, {
          "id": "WH-CAPTURED",
          "event_type": "PAYMENT.CAPTURE.COMPLETED",
          "resource": {
               "id": "CAPTURE-1",
               "status": "COMPLETED",
               "custom_id": link_id,
               "amount": {"value": "1000", "currency_code": "JPY"},
               "supplementary_data": {"related_ids": {"order_id": "ORDER-1"}},
          },
     })


def reconcile(db, event):
     outcome = ReconciliationService(db).reconcile(event)
     db.commit()
     return outcome


def transactions_for(db, link):
     db.expire_all()
     with tenant_scope(link.tenant_id):
          return db.query(Transaction).filter(Transaction.payment_link_id == link.id).order_by(Transaction.created_at).all()


def reload_link(db, link):
     db.expire_all()
     with tenant_scope(link.tenant_id):
          return db.get(PaymentLink, link.id)


def test_only_pending_transactions_move():
     assert can_transition(TransactionStatus.PENDING, TransactionStatus.SUCCEEDED)
     assert not can_transition(TransactionStatus.SUCCEEDED, TransactionStatus.FAILED)
     assert not can_transition(TransactionStatus.FAILED, TransactionStatus.SUCCEEDED)
     assert not can_transition(TransactionStatus.PENDING, TransactionStatus.PENDING)


def test_first_success_creates_transaction_and_completes_link(db, stripe_link):
     outcome = reconcile(db, stripe_intent("payment_intent.succeeded", stripe_link.id))

     assert outcome.action == "created"
     assert outcome.link_completed
     rows = transactions_for(db, stripe_link)
     assert len(rows) == 1
     assert rows[0].external_id == "pi_1"
     assert rows[0].status == TransactionStatus.SUCCEEDED
     assert rows[0].paid_at is not None
     link = reload_link(db, stripe_link)
     assert link.status == PaymentLinkStatus.COMPLETED
     assert link.completed_at is not None


def test_duplicate_delivery_leaves_one_row(db, stripe_link):
     event = stripe_intent("payment_intent.succeeded", stripe_link.id)

     first = reconcile(db, event)
     second = reconcile(db, event)

     assert first.action == "created"
     assert second.action == "duplicate"
     assert second.transaction_id == first.transaction_id
     assert not second.link_completed
     assert len(transactions_for(db, stripe_link)) == 1


def test_approved_then_captured_updates_the_same_row(db, paypal_link):
     approved = reconcile(db, paypal_approved(paypal_link.id))
     captured = reconcile(db, paypal_captured(paypal_link.id))

     assert approved.action == "created"
     assert approved.status == TransactionStatus.PENDING
     assert captured.action == "updated"
     assert captured.transaction_id == approved.transaction_id
     assert captured.link_completed
     rows = transactions_for(db, paypal_link)
     assert len(rows) == 1
     assert rows[0].external_id == "ORDER-1"
     assert rows[0].external_reference == "CAPTURE-1"
     assert rows[0].status == TransactionStatus.SUCCEEDED
     assert rows[0].customer_email == "buyer@example.com"


def test_out_of_order_delivery_never_regresses(db, paypal_link):
     captured = reconcile(db, paypal_captured(paypal_link.id))
     approved = reconcile(db, paypal_approved(paypal_link.id))

     assert captured.action == "created"
     assert approved.action == "stale"
     rows = transactions_for(db, paypal_link)
     assert len(rows) == 1
     assert rows[0].status == TransactionStatus.SUCCEEDED
     # The late event still contributes what it knows about the payer
     assert rows[0].customer_email == "buyer@example.com"


def test_failure_after_success_is_ignored(db, stripe_link):
     reconcile(db, stripe_intent("payment_intent.succeeded", stripe_link.id))
     outcome = reconcile(db, stripe_intent("payment_intent.payment_failed", stripe_link.id, event_id="evt_2"))

     assert outcome.action == "stale"
     assert transactions_for(db, stripe_link)[0].status == TransactionStatus.SUCCEEDED


def test_refund_is_a_negative_row_and_nets_revenue_to_zero(db, stripe_link):
     payment = reconcile(db, stripe_intent("payment_intent.succeeded", stripe_link.id))
     refund = reconcile(db, stripe_refund(stripe_link.id))

     assert refund.action == "refund_recorded"
     rows = {row.id: row for row in transactions_for(db, stripe_link)}
     original = rows[payment.transaction_id]
     refund_row = rows[refund.transaction_id]
     assert refund_row.is_refund
     assert refund_row.refund_of_id == original.id
     assert refund_row.amount == Decimal("-1000")
     assert refund_row.status == TransactionStatus.REFUNDED
     assert original.status == TransactionStatus.SUCCEEDED
     assert original.amount == Decimal("1000")
     assert original.event_metadata["refunded"] is True
     assert original.event_metadata["refund_external_id"] == "re_1"

     with tenant_scope("tenant-a"):
          assert TransactionService.recognized_revenue(db, stripe_link.id) == Decimal("0")


def test_duplicate_refund_is_ignored(db, stripe_link):
     reconcile(db, stripe_intent("payment_intent.succeeded", stripe_link.id))
     reconcile(db, stripe_refund(stripe_link.id))
     again = reconcile(db, stripe_refund(stripe_link.id))

     assert again.action == "refund_duplicate"
     assert len(transactions_for(db, stripe_link)) == 2


def test_second_refund_of_the_same_capture_is_ignored(db, stripe_link):
     reconcile(db, stripe_intent("payment_intent.succeeded", stripe_link.id))
     first = reconcile(db, stripe_refund(stripe_link.id, refund_id="re_1"))
     second = reconcile(db, stripe_refund(stripe_link.id, refund_id="re_2"))

     assert first.action == "refund_recorded"
     assert second.action == "refund_duplicate"
     assert second.transaction_id == first.transaction_id
     assert [row.external_id for row in transactions_for(db, stripe_link)] == ["pi_1", "re_1"]
     with tenant_scope("tenant-a"):
          assert TransactionService.recognized_revenue(db, stripe_link.id) == Decimal("0")


def test_refund_before_its_capture_is_deferred(db, stripe_link):
     with pytest.raises(ReconciliationDeferred):
          ReconciliationService(db).reconcile(stripe_refund(stripe_link.id))
     db.rollback()
     assert transactions_for(db, stripe_link) == []

     # The provider redelivers the refund after the capture arrived
     reconcile(db, stripe_intent("payment_intent.succeeded", stripe_link.id))
     outcome = reconcile(db, stripe_refund(stripe_link.id))

     assert outcome.action == "refund_recorded"
     assert len(transactions_for(db, stripe_link)) == 2


def test_refund_without_any_known_link_is_deferred(db, paypal_link):
     refund = parse_event(PaymentProvider.PAYPAL, {
          "id": "WH-REFUNDED",
          "event_type": "PAYMENT.CAPTURE.REFUNDED",
          "resource": {
               "id": "REFUND-1",
               "status": "COMPLETED",
               "amount": {"value": "1000", "currency_code": "JPY"},
               "links": [{"rel": "up", "href": "https://api.paypal.com/v2/payments/captures/CAPTURE-9"}],
          },
     })

     with pytest.raises(ReconciliationDeferred):
          ReconciliationService(db).reconcile(refund)


def test_event_for_unknown_link_is_unmatched(db, stripe_link):
     outcome = reconcile(db, stripe_intent("payment_intent.succeeded", "no-such-link", intent_id="pi_9"))

     assert outcome.action == "unmatched"


def test_link_is_found_by_provider_link_id(db, paypal_link):
     event = paypal_captured(None)

     outcome = reconcile(db, event)

     assert outcome.action == "created"
     assert outcome.payment_link_id == paypal_link.id


def test_link_completes_only_once(db, stripe_link):
     first = reconcile(db, stripe_intent("payment_intent.succeeded", stripe_link.id))
     completed_at = reload_link(db, stripe_link).completed_at
     second = reconcile(db, stripe_intent("payment_intent.succeeded", stripe_link.id, intent_id="pi_2", event_id="evt_2"))

     assert first.link_completed
     assert second.action == "created"
     assert not second.link_completed
     assert reload_link(db, stripe_link).completed_at == completed_at


def test_payment_on_cancelled_link_is_recorded_without_reopening(db, session_factory, vault):
     config = create_config(session_factory, vault, "tenant-a")
     link = create_link(session_factory, config, status=PaymentLinkStatus.CANCELLED)

     outcome = reconcile(db, stripe_intent("payment_intent.succeeded", link.id))

     assert outcome.action == "created"
     assert not outcome.link_completed
     assert reload_link(db, link).status == PaymentLinkStatus.CANCELLED


def test_expired_event_expires_pending_link(db, session_factory, vault):
     config = create_config(session_factory, vault, "tenant-a", provider=PaymentProvider.PAYPAY)
     link = create_link(session_factory, config)
     event = parse_event(PaymentProvider.PAYPAY, {
          "type": "payment.expired",
          "data": {"merchantPaymentId": link.id, "amount": {"amount": 1000, "currency": "JPY"}},
     })

     outcome = reconcile(db, event)

     assert outcome.status == TransactionStatus.EXPIRED
     assert reload_link(db, link).status == PaymentLinkStatus.EXPIRED


def test_tenant_isolation_holds_for_reconciliation(db, session_factory, vault, stripe_link):
     other_config = create_config(session_factory, vault, "tenant-b")
     other_link = create_link(session_factory, other_config)

     reconcile(db, stripe_intent("payment_intent.succeeded", stripe_link.id))
     reconcile(db, stripe_intent("payment_intent.succeeded", other_link.id, intent_id="pi_b", event_id="evt_b"))

     db.expire_all()
     with tenant_scope("tenant-a"):
          assert [t.external_id for t in db.query(Transaction).all()] == ["pi_1"]
     with tenant_scope("tenant-b"):
          assert [t.external_id for t in db.query(Transaction).all()] == ["pi_b"]


def test_key_owned_by_another_tenant_is_rejected(db, session_factory, vault, stripe_link):
     other_config = create_config(session_factory, vault, "tenant-b")
     other_link = create_link(session_factory, other_config)
     reconcile(db, stripe_intent("payment_intent.succeeded", other_link.id, intent_id="pi_shared"))

     with tenant_scope("tenant-a"):
          with pytest.raises(TenantIsolationViolation):
               ReconciliationService(db)._insert_if_absent({
                    "payment_link_id": stripe_link.id,
                    "provider": PaymentProvider.STRIPE,
                    "external_id": "pi_shared",
                    "amount": Decimal("1000"),
                    "currency": "JPY",
                    "status": TransactionStatus.SUCCEEDED,
               })


def test_concurrent_delivery_reuses_the_winning_row(db, session_factory, stripe_link):
     event = stripe_intent("payment_intent.succeeded", stripe_link.id)
     with short_session(session_factory) as other:
          winner = ReconciliationService(other).reconcile(event)

     # This delivery looked before the winner committed and saw nothing
     service = ReconciliationService(db)
     service._find_transaction = lambda event, ids: None
     outcome = service.reconcile(event)
     db.commit()

     assert outcome.action == "duplicate"
     assert outcome.transaction_id == winner.transaction_id
     assert len(transactions_for(db, stripe_link)) == 1


def test_insert_of_a_taken_key_falls_back_to_the_existing_row(db, session_factory, stripe_link):
     values = {
          "payment_link_id": stripe_link.id,
          "provider": PaymentProvider.STRIPE,
          "external_id": "pi_race",
          "amount": Decimal("1000"),
          "currency": "JPY",
          "status": TransactionStatus.SUCCEEDED,
     }
     with short_session(session_factory) as first:
          with tenant_scope("tenant-a"):
               winner, created = ReconciliationService(first)._insert_if_absent(dict(values))
               assert created

     with tenant_scope("tenant-a"):
          loser, created = ReconciliationService(db)._insert_if_absent(dict(values, amount=Decimal("999")))
          db.commit()

     assert not created
     assert loser.id == winner.id
     assert loser.amount == Decimal("1000")
     assert len(transactions_for(db, stripe_link)) == 1


def test_concurrent_refunds_of_one_capture_keep_a_single_row(db, session_factory, stripe_link):
     payment = reconcile(db, stripe_intent("payment_intent.succeeded", stripe_link.id))
     refund_values = {
          "payment_link_id": stripe_link.id,
          "provider": PaymentProvider.STRIPE,
          "amount": Decimal("-1000"),
          "currency": "JPY",
          "status": TransactionStatus.REFUNDED,
          "is_refund": True,
          "refund_of_id": payment.transaction_id,
     }
     with short_session(session_factory) as first:
          with tenant_scope("tenant-a"):
               winner, _ = ReconciliationService(first)._insert_if_absent(dict(refund_values, external_id="re_1"))

     with tenant_scope("tenant-a"):
          loser, created = ReconciliationService(db)._insert_if_absent(dict(refund_values, external_id="re_2"))
          db.commit()

     assert not created
     assert loser.id == winner.id
     with tenant_scope("tenant-a"):
          assert TransactionService.recognized_revenue(db, stripe_link.id) == Decimal("0")
