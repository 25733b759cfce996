# tests/test_payment_services.py
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from exceptions import ConflictError, CredentialError, NotFoundError, ValidationError
from models import (
     PaymentLink, PaymentLinkConfig, PaymentLinkStatus, PaymentProvider, Transaction, TransactionStatus,
)
from schemas.payment_config import PaymentConfigCreate, PaymentConfigUpdate
from schemas.payment_link import PaymentLinkCreate, PaymentLinkUpdate
from schemas.transaction import TransactionUpdate
from services.payment_config_service import PaymentConfigService
from services.payment_link_service import PaymentLinkService
from services.transaction_service import TransactionService
from services.tenant_context import tenant_scope, without_tenant_isolation
from tests.conftest import STRIPE_CREDENTIALS, create_config, create_link, short_session


def stripe_routes(http):
     http.add("POST", "/v1/products", body={"id": "prod_1"})
     http.add("POST", "/v1/prices", body={"id": "price_1"})
     http.add("POST", "/v1/payment_links", body={"id": "plink_1", "url": "https://buy.stripe.com/test_abc"})


def link_request(config_id, **overrides):
     values = dict(config_id=config_id, amount=Decimal("1000"), currency="JPY", product_name="Plan")
     values.update(overrides)
     return PaymentLinkCreate(**values)


# --- PaymentConfigService ---------------------------------------------------

def test_credentials_are_stored_encrypted(db, vault):
     with tenant_scope("tenant-a"):
          config = PaymentConfigService.create_config(db, vault, PaymentConfigCreate(
               provider=PaymentProvider.STRIPE, display_name="Main", credentials=STRIPE_CREDENTIALS,
          ))
          db.commit()

          assert "sk_test_abc123456789" not in config.encrypted_config
          creds = PaymentConfigService.get_credentials(vault, config)
          assert creds.secret_key == "sk_test_abc123456789"
          assert creds.is_test_mode
          masked = PaymentConfigService.masked_credentials(vault, config)
          assert masked["secret_key"] == "sk_t****6789"


def test_invalid_credentials_are_rejected_before_storage(db, vault):
     with tenant_scope("tenant-a"):
          with pytest.raises(CredentialError):
               PaymentConfigService.create_config(db, vault, PaymentConfigCreate(
                    provider=PaymentProvider.STRIPE,
                    display_name="Main",
                    credentials={"publishable_key": "pk_test_1", "secret_key": "rk_live_wrong"},
               ))
          assert db.query(PaymentLinkConfig).count() == 0


def test_duplicate_display_name_conflicts_within_a_tenant_only(db, session_factory, vault):
     create_config(session_factory, vault, "tenant-a", name="Main")
     create_config(session_factory, vault, "tenant-b", name="Main")

     with tenant_scope("tenant-a"):
          with pytest.raises(ConflictError):
               PaymentConfigService.create_config(db, vault, PaymentConfigCreate(
                    provider=PaymentProvider.STRIPE, display_name="Main", credentials=STRIPE_CREDENTIALS,
               ))


def test_new_credentials_clear_verification(db, session_factory, vault):
     config = create_config(session_factory, vault, "tenant-a")

     with tenant_scope("tenant-a"):
          stored = PaymentConfigService.get_config(db, config.id)
          stored.verified_at = datetime(2026, 1, 1)
          db.commit()

          updated = PaymentConfigService.update_config(db, vault, config.id, PaymentConfigUpdate(
               credentials={"publishable_key": "pk_test_new123456", "secret_key": "sk_test_new123456"},
          ))
          db.commit()

          assert updated.verified_at is None
          assert PaymentConfigService.get_credentials(vault, updated).secret_key == "sk_test_new123456"


def test_delete_in_another_tenant_is_not_found(db, session_factory, vault):
     config = create_config(session_factory, vault, "tenant-a")

     with tenant_scope("tenant-b"):
          with pytest.raises(NotFoundError):
               PaymentConfigService.delete_config(db, config.id)
     with tenant_scope("tenant-a"):
          PaymentConfigService.delete_config(db, config.id)
          db.commit()
          assert db.query(PaymentLinkConfig).count() == 0


def test_delete_refuses_config_with_links(db, session_factory, vault):
     config = create_config(session_factory, vault, "tenant-a")
     create_link(session_factory, config)

     with tenant_scope("tenant-a"):
          with pytest.raises(ConflictError):
               PaymentConfigService.delete_config(db, config.id)


def test_connection_test_records_outcome(db, session_factory, vault, http, adapter_for):
     config = create_config(session_factory, vault, "tenant-a")
     http.add("GET", "/v1/account", body={"id": "acct_1"})

     with tenant_scope("tenant-a"):
          success, message, tested = PaymentConfigService.test_connection(db, vault, config.id, adapter_for)

     assert success
     assert tested.last_tested_at is not None
     assert tested.verified_at == tested.last_tested_at


def test_connection_test_with_unreadable_credentials(db, session_factory, vault, adapter_for):
     config = create_config(session_factory, vault, "tenant-a")

     with tenant_scope("tenant-a"):
          stored = PaymentConfigService.get_config(db, config.id)
          stored.encrypted_config = "garbage"
          db.flush()
          success, message, tested = PaymentConfigService.test_connection(db, vault, config.id, adapter_for)

     assert not success
     assert tested.verified_at is None
     assert tested.last_tested_at is not None


def test_ciphertext_copied_from_another_tenant_does_not_decrypt(db, session_factory, vault):
     config_a = create_config(session_factory, vault, "tenant-a")
     config_b = create_config(session_factory, vault, "tenant-b")

     with without_tenant_isolation("test copies ciphertext"):
          source = db.get(PaymentLinkConfig, config_a.id)
          target = db.get(PaymentLinkConfig, config_b.id)
          target.encrypted_config = source.encrypted_config
          with tenant_scope("tenant-b"):
               db.flush()
               with pytest.raises(CredentialError):
                    PaymentConfigService.get_credentials(vault, target)


# --- PaymentLinkService -----------------------------------------------------

def test_create_payment_link_stores_provider_result(db, session_factory, vault, http, adapter_for, settings):
     config = create_config(session_factory, vault, "tenant-a")
     stripe_routes(http)

     with tenant_scope("tenant-a"):
          link, result = PaymentLinkService.create_payment_link(db, vault, link_request(config.id), adapter_for, settings)
          db.commit()

     assert result.success
     assert link.tenant_id == "tenant-a"
     assert link.url == "https://buy.stripe.com/test_abc"
     assert link.provider_link_id == "plink_1"
     assert link.status == PaymentLinkStatus.PENDING
     assert link.expires_at > datetime.utcnow() + timedelta(hours=23)
     # The link id travels to Stripe as the reference
     assert http.calls_to("/v1/payment_links")[0]["data"]["metadata[link_id]"] == link.id


def test_failed_provider_call_leaves_no_link(db, session_factory, vault, http, adapter_for, settings):
     config = create_config(session_factory, vault, "tenant-a")
     http.add("POST", "/v1/products", status=500, body={"error": {"message": "boom"}})

     with tenant_scope("tenant-a"):
          link, result = PaymentLinkService.create_payment_link(db, vault, link_request(config.id), adapter_for, settings)
          db.commit()
          assert db.query(PaymentLink).count() == 0

     assert link is None
     assert not result.success
     assert result.error_details["provider"] == "stripe"


def test_invalid_request_fails_before_any_side_effect(db, session_factory, vault, http, adapter_for, settings):
     config = create_config(session_factory, vault, "tenant-a")

     with tenant_scope("tenant-a"):
          with pytest.raises(ValidationError):
               PaymentLinkService.create_payment_link(
                    db, vault, link_request(config.id, amount=Decimal("49")), adapter_for, settings
               )
          assert db.query(PaymentLink).count() == 0
     assert http.calls == []


def test_other_tenants_config_cannot_be_used(db, session_factory, vault, http, adapter_for, settings):
     config = create_config(session_factory, vault, "tenant-b")

     with tenant_scope("tenant-a"):
          with pytest.raises(NotFoundError):
               PaymentLinkService.create_payment_link(db, vault, link_request(config.id), adapter_for, settings)
     assert http.calls == []


def test_inactive_config_cannot_be_used(db, session_factory, vault, adapter_for, settings):
     config = create_config(session_factory, vault, "tenant-a", is_active=False)

     with tenant_scope("tenant-a"):
          with pytest.raises(ValidationError):
               PaymentLinkService.create_payment_link(db, vault, link_request(config.id), adapter_for, settings)


def test_cancel_only_pending_links(db, session_factory, vault):
     config = create_config(session_factory, vault, "tenant-a")
     link = create_link(session_factory, config)

     with tenant_scope("tenant-a"):
          cancelled = PaymentLinkService.cancel_link(db, link.id)
          db.commit()
          assert cancelled.status == PaymentLinkStatus.CANCELLED
          with pytest.raises(ValidationError):
               PaymentLinkService.cancel_link(db, link.id)


def test_expiry_sweep_covers_every_tenant(db, session_factory, vault):
     past = datetime.utcnow() - timedelta(hours=1)
     future = datetime.utcnow() + timedelta(hours=1)
     config_a = create_config(session_factory, vault, "tenant-a")
     config_b = create_config(session_factory, vault, "tenant-b")
     overdue_a = create_link(session_factory, config_a, expires_at=past)
     overdue_b = create_link(session_factory, config_b, expires_at=past)
     current = create_link(session_factory, config_a, expires_at=future)
     completed = create_link(session_factory, config_b, expires_at=past, status=PaymentLinkStatus.COMPLETED)

     assert PaymentLinkService.expire_overdue_links(db) == 2
     db.commit()

     db.expire_all()
     with without_tenant_isolation("test assertions"):
          statuses = {link.id: link.status for link in db.query(PaymentLink).all()}
     assert statuses[overdue_a.id] == PaymentLinkStatus.EXPIRED
     assert statuses[overdue_b.id] == PaymentLinkStatus.EXPIRED
     assert statuses[current.id] == PaymentLinkStatus.PENDING
     assert statuses[completed.id] == PaymentLinkStatus.COMPLETED


# --- TransactionService -----------------------------------------------------

def add_transaction(session_factory, link, external_id, amount, status, **extra):
     with short_session(session_factory) as session:
          with tenant_scope(link.tenant_id):
               session.add(Transaction(
                    payment_link_id=link.id,
                    provider=link.provider,
                    external_id=external_id,
                    amount=Decimal(amount),
                    currency=link.currency,
                    status=status,
                    **extra,
               ))


def test_transactions_listed_per_tenant_and_filtered(db, session_factory, vault):
     link_a = create_link(session_factory, create_config(session_factory, vault, "tenant-a"))
     link_b = create_link(session_factory, create_config(session_factory, vault, "tenant-b"))
     add_transaction(session_factory, link_a, "pi_1", "1000", TransactionStatus.SUCCEEDED)
     add_transaction(session_factory, link_a, "pi_2", "1000", TransactionStatus.FAILED)
     add_transaction(session_factory, link_b, "pi_3", "1000", TransactionStatus.SUCCEEDED)

     with tenant_scope("tenant-a"):
          items, total = TransactionService.list_transactions(db)
          assert total == 2
          assert {t.external_id for t in items} == {"pi_1", "pi_2"}

          items, total = TransactionService.list_transactions(db, status=TransactionStatus.SUCCEEDED)
          assert [t.external_id for t in items] == ["pi_1"]

          items, total = TransactionService.list_transactions(db, payment_link_id=link_b.id)
          assert total == 0


def test_revenue_nets_refunds_and_ignores_failures(db, session_factory, vault):
     link = create_link(session_factory, create_config(session_factory, vault, "tenant-a"))
     add_transaction(session_factory, link, "pi_1", "1000", TransactionStatus.SUCCEEDED)
     add_transaction(session_factory, link, "pi_2", "1000", TransactionStatus.REFUNDED)
     add_transaction(session_factory, link, "re_2", "-1000", TransactionStatus.REFUNDED, is_refund=True)
     add_transaction(session_factory, link, "pi_3", "500", TransactionStatus.FAILED)

     with tenant_scope("tenant-a"):
          assert TransactionService.recognized_revenue(db, link.id) == Decimal("1000")
     with tenant_scope("tenant-b"):
          with pytest.raises(NotFoundError):
               TransactionService.recognized_revenue(db, link.id)


def test_update_link_description_and_cancel(db, session_factory, vault):
     config = create_config(session_factory, vault, "tenant-a")
     link = create_link(session_factory, config)

     with tenant_scope("tenant-a"):
          updated = PaymentLinkService.update_link(db, link.id, PaymentLinkUpdate(description="Spring plan"))
          assert updated.description == "Spring plan"
          assert updated.status == PaymentLinkStatus.PENDING

          cancelled = PaymentLinkService.update_link(
               db, link.id, PaymentLinkUpdate(status=PaymentLinkStatus.CANCELLED)
          )
          assert cancelled.status == PaymentLinkStatus.CANCELLED

          with pytest.raises(ValidationError):
               PaymentLinkService.update_link(db, link.id, PaymentLinkUpdate(status=PaymentLinkStatus.PENDING))
          with pytest.raises(ValidationError):
               PaymentLinkService.update_link(db, link.id, PaymentLinkUpdate())


def test_delete_link_keeps_links_with_ledger_rows(db, session_factory, vault):
     config = create_config(session_factory, vault, "tenant-a")
     unpaid = create_link(session_factory, config)
     paid = create_link(session_factory, config)
     completed = create_link(session_factory, config, status=PaymentLinkStatus.COMPLETED)
     add_transaction(session_factory, paid, "pi_1", "1000", TransactionStatus.FAILED)

     with tenant_scope("tenant-b"):
          with pytest.raises(NotFoundError):
               PaymentLinkService.delete_link(db, unpaid.id)

     with tenant_scope("tenant-a"):
          PaymentLinkService.delete_link(db, unpaid.id)
          with pytest.raises(ConflictError):
               PaymentLinkService.delete_link(db, paid.id)
          with pytest.raises(ConflictError):
               PaymentLinkService.delete_link(db, completed.id)
          db.commit()
          assert {link.id for link in db.query(PaymentLink).all()} == {paid.id, completed.id}


def test_bulk_actions_only_touch_the_current_tenant(db, session_factory, vault):
     config_a = create_config(session_factory, vault, "tenant-a")
     config_b = create_config(session_factory, vault, "tenant-b")
     pending = create_link(session_factory, config_a)
     already_cancelled = create_link(session_factory, config_a, status=PaymentLinkStatus.CANCELLED)
     foreign = create_link(session_factory, config_b)
     ids = [pending.id, already_cancelled.id, foreign.id, "missing"]

     with tenant_scope("tenant-a"):
          assert PaymentLinkService.bulk_action(db, "cancel", ids) == (1, 3)
          assert PaymentLinkService.bulk_action(db, "delete", ids) == (2, 2)
          db.commit()
          assert db.query(PaymentLink).count() == 0

     with tenant_scope("tenant-b"):
          assert db.get(PaymentLink, foreign.id).status == PaymentLinkStatus.PENDING


def test_update_transaction_annotates_payer_only(db, session_factory, vault):
     link = create_link(session_factory, create_config(session_factory, vault, "tenant-a"))
     add_transaction(session_factory, link, "pi_1", "1000", TransactionStatus.SUCCEEDED, event_metadata={"source": "webhook"})

     with tenant_scope("tenant-a"):
          transaction = db.query(Transaction).one()
          updated = TransactionService.update_transaction(db, transaction.id, TransactionUpdate(
               customer_email="buyer@example.com", metadata={"note": "VIP"},
          ))
          db.commit()
          assert updated.customer_email == "buyer@example.com"
          assert updated.event_metadata == {"source": "webhook", "note": "VIP"}
          assert updated.amount == Decimal("1000")

          with pytest.raises(ValidationError):
               TransactionService.update_transaction(db, transaction.id, TransactionUpdate(customer_email="nope"))

     with tenant_scope("tenant-b"):
          with pytest.raises(NotFoundError):
               TransactionService.get_transaction(db, transaction.id)
