# tests/conftest.py
import json
import os
import time
import hashlib
import hmac
from contextlib import contextmanager
from decimal import Decimal

from cryptography.fernet import Fernet

# Settings are read from the environment on first use
TEST_VAULT_KEY = Fernet.generate_key().decode("ascii")
TEST_JWT_SECRET = "test-jwt-secret"
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = TEST_JWT_SECRET
os.environ["VAULT_KEY"] = TEST_VAULT_KEY
os.environ["LOG_JSON"] = "false"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PAYPAL_WEBHOOK_ID"] = "WH-TEST-1"
os.environ["SQUARE_WEBHOOK_SIGNATURE_KEY"] = "square-signature-key"
os.environ["SQUARE_WEBHOOK_URL"] = "https://hooks.example.com/api/webhooks/square"
os.environ["PAYPAY_WEBHOOK_SECRET"] = "paypay-webhook-secret"
os.environ["FINCODE_WEBHOOK_SECRET"] = "fincode-webhook-secret"

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.orm import sessionmaker

from config import get_settings
from database import create_db_engine, get_session
from dependencies import get_adapter_resolver, get_paypal_cert_fetcher, get_vault_dependency
from models import Base, PaymentLink, PaymentLinkStatus, PaymentProvider
from providers import get_adapter
from schemas.payment_config import PaymentConfigCreate
from services.credential_vault import CredentialVault
from services.payment_config_service import PaymentConfigService
from services.tenant_context import tenant_scope

STRIPE_CREDENTIALS = {"publishable_key": "pk_test_abc123456789", "secret_key": "sk_test_abc123456789"}

CREDENTIALS = {
     PaymentProvider.STRIPE: STRIPE_CREDENTIALS,
     PaymentProvider.PAYPAL: {"client_id": "paypal-client-id", "client_secret": "paypal-client-secret"},
     PaymentProvider.SQUARE: {"application_id": "sq0idp-app", "access_token": "EAAAsquaretoken", "location_id": "L1"},
     PaymentProvider.PAYPAY: {"merchant_id": "m-123", "api_key": "a_paypaykey", "api_secret": "paypay-secret"},
     PaymentProvider.FINCODE: {"shop_id": "s_shop1", "secret_key": "m_test_secret", "public_key": "p_test_public"},
}


class FakeResponse:
     def __init__(self, status_code=200, body=None, text=None):
          self.status_code = status_code
          if text is not None:
               self.content = text.encode("utf-8")
          elif body is not None:
               self.content = json.dumps(body).encode("utf-8")
          else:
               self.content = b""
          self.text = self.content.decode("utf-8")

     def json(self):
          return json.loads(self.content)


class FakeSession:
     """Stand-in for requests.Session: routes by method and URL suffix, records calls."""

     def __init__(self):
          self.routes = []
          self.calls = []

     def add(self, method, path, status=200, body=None, text=None, exc=None):
          self.routes.append((method.upper(), path, FakeResponse(status, body, text), exc))
          return self

     def request(self, method, url, timeout=None, **kwargs):
          self.calls.append({"method": method.upper(), "url": url, "timeout": timeout, **kwargs})
          for route_method, path, response, exc in self.routes:
               if route_method == method.upper() and url.split("?")[0].endswith(path):
                    if exc is not None:
                         raise exc
                    return response
          return FakeResponse(404, {"error": {"message": f"no route for {method} {url}"}})

     def calls_to(self, path):
          return [call for call in self.calls if call["url"].endswith(path)]


@pytest.fixture
def settings():
     return get_settings()


@pytest.fixture
def engine(tmp_path):
     engine = create_db_engine(f"sqlite:///{tmp_path / 'payments.db'}")
     Base.metadata.create_all(engine)
     yield engine
     engine.dispose()


@pytest.fixture
def session_factory(engine):
     return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
     session = session_factory()
     yield session
     session.rollback()
     session.close()


@contextmanager
def short_session(session_factory):
     session = session_factory()
     try:
          yield session
          session.commit()
     finally:
          session.close()


@pytest.fixture
def vault():
     return CredentialVault([TEST_VAULT_KEY])


@pytest.fixture
def http():
     return FakeSession()


@pytest.fixture
def adapter_for(http, settings):
     return lambda provider: get_adapter(provider, settings, session=http)


def create_config(session_factory, vault, tenant_id, provider=PaymentProvider.STRIPE, name="Main", **overrides):
     with short_session(session_factory) as session:
          with tenant_scope(tenant_id):
               config = PaymentConfigService.create_config(
                    session,
                    vault,
                    PaymentConfigCreate(
                         provider=provider,
                         display_name=name,
                         credentials=overrides.pop("credentials", CREDENTIALS[provider]),
                         **overrides,
                    ),
               )
               session.commit()
     return config


def create_link(session_factory, config, **overrides):
     values = dict(
          tenant_id=config.tenant_id,
          config_id=config.id,
          provider=config.provider,
          amount=Decimal("1000"),
          currency="JPY",
          product_name="Plan",
          status=PaymentLinkStatus.PENDING,
          url="https://checkout.example.com/l/1",
     )
     values.update(overrides)
     with short_session(session_factory) as session:
          with tenant_scope(config.tenant_id):
               link = PaymentLink(**values)
               session.add(link)
               session.commit()
     return link


def auth_headers(tenant_id):
     token = jwt.encode({"tenant_id": tenant_id}, TEST_JWT_SECRET, algorithm="HS256")
     return {"Authorization": f"Bearer {token}"}


def stripe_signature(body: bytes, secret="whsec_test_secret", timestamp=None):
     timestamp = timestamp or int(time.time())
     signed = f"{timestamp}.{body.decode('utf-8')}".encode("utf-8")
     digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
     return f"t={timestamp},v1={digest}"


@pytest.fixture
def client(session_factory, vault, adapter_for):
     from main import app

     def _session():
          session = session_factory()
          try:
               yield session
          finally:
               session.close()

     app.dependency_overrides[get_session] = _session
     app.dependency_overrides[get_vault_dependency] = lambda: vault
     app.dependency_overrides[get_adapter_resolver] = lambda: adapter_for
     app.dependency_overrides[get_paypal_cert_fetcher] = lambda: None
     yield TestClient(app)
     app.dependency_overrides.clear()
