# services/tenant_context.py
"""
Tenant Context Propagator.

The active tenant lives in a ContextVar, so it is local to the running
asyncio task (or to the worker thread executing a sync route) and can never
leak into a concurrent request. Routers open a scope per operation:

     with tenant_scope(tenant_id):
          configs = db.query(PaymentLinkConfig).all()   # only this tenant's rows

Scoping is enforced by SQLAlchemy session events installed on import:
- do_orm_execute adds tenant criteria to every ORM SELECT / UPDATE / DELETE
  that touches PaymentLinkConfig, PaymentLink or Transaction (transactions
  are scoped through their parent link);
- before_flush stamps the owner on new rows and refuses cross-tenant writes.

A statement can pin the tenant explicitly with the "scoped_tenant_id"
execution option (explicit value wins). System jobs that genuinely need to
see every tenant use without_tenant_isolation(reason), which is logged on
every use. Anything else without a context raises TenantContextMissing.
"""
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

import structlog
from sqlalchemy import Table, event, inspect, select
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria
from sqlalchemy.sql import visitors

from exceptions import TenantContextMissing, TenantIsolationViolation
from models import PaymentLink, PaymentLinkConfig, TenantOwned, Transaction

logger = structlog.get_logger(__name__)

# Execution option that pins the tenant of a single statement
SCOPED_TENANT_OPTION = "scoped_tenant_id"

_current_tenant: ContextVar[Optional[str]] = ContextVar("current_tenant_id", default=None)
_isolation_bypass: ContextVar[Optional[str]] = ContextVar("tenant_isolation_bypass", default=None)

_SCOPED_ENTITIES = (PaymentLinkConfig, PaymentLink, Transaction)
_SCOPED_TABLES = frozenset(entity.__table__.name for entity in _SCOPED_ENTITIES)


@contextmanager
def tenant_scope(tenant_id: str) -> Generator[str, None, None]:
     """
     Run the enclosed block as tenant_id.

     Entering a tenant scope inside without_tenant_isolation() re-enables
     isolation for the inner block. The previous context is restored on exit.
     """
     if not tenant_id:
          raise TenantContextMissing("A tenant id is required to open a tenant scope")

     tenant_id = str(tenant_id)
     tenant_token = _current_tenant.set(tenant_id)
     bypass_token = _isolation_bypass.set(None)
     try:
          with structlog.contextvars.bound_contextvars(tenant_id=tenant_id):
               yield tenant_id
     finally:
          _isolation_bypass.reset(bypass_token)
          _current_tenant.reset(tenant_token)


@contextmanager
def without_tenant_isolation(reason: str) -> Generator[None, None, None]:
     """
     Escape hatch for system jobs (webhook owner resolution, expiry sweeps).

     Every call site must state why it needs to see all tenants; the reason
     is written to the audit log.
     """
     if not reason or not reason.strip():
          raise ValueError("without_tenant_isolation() requires a reason")

     logger.warning(
          "tenant_isolation_bypassed",
          reason=reason,
          outer_tenant_id=_current_tenant.get(),
     )
     token = _isolation_bypass.set(reason)
     try:
          yield
     finally:
          _isolation_bypass.reset(token)


def current_tenant_id() -> Optional[str]:
     return _current_tenant.get()


def require_tenant_id() -> str:
     tenant_id = _current_tenant.get()
     if tenant_id is None:
          raise TenantContextMissing("No tenant context is active")
     return tenant_id


def isolation_bypassed() -> bool:
     return _isolation_bypass.get() is not None


def _effective_tenant(execution_options) -> Optional[str]:
     """
     Tenant to filter on, or None when the bypass is active.

     Raises TenantContextMissing when there is nothing to filter on.
     """
     explicit = execution_options.get(SCOPED_TENANT_OPTION)
     if explicit is not None:
          return str(explicit)
     if isolation_bypassed():
          return None
     tenant_id = _current_tenant.get()
     if tenant_id is None:
          raise TenantContextMissing("Tenant-owned data accessed outside of a tenant scope")
     return tenant_id


def _tenant_criteria(entity, tenant_id: str):
     if entity is Transaction:
          return Transaction.payment_link_id.in_(
               select(PaymentLink.id).where(PaymentLink.tenant_id == tenant_id)
          )
     return entity.tenant_id == tenant_id


def _touches_tenant_data(execute_state: ORMExecuteState) -> bool:
     if any(mapper.class_ in _SCOPED_ENTITIES for mapper in execute_state.all_mappers):
          return True
     # Entities wrapped in a subquery (Query.count(), select_from(subq)) are
     # missing from all_mappers; look for their tables instead
     return any(
          isinstance(element, Table) and element.name in _SCOPED_TABLES
          for element in visitors.iterate(execute_state.statement)
     )


@event.listens_for(Session, "do_orm_execute")
def _scope_tenant_statements(execute_state: ORMExecuteState) -> None:
     if execute_state.is_column_load:
          return
     if not (execute_state.is_select or execute_state.is_update or execute_state.is_delete):
          return

     if not _touches_tenant_data(execute_state):
          return

     tenant_id = _effective_tenant(execute_state.execution_options)
     if tenant_id is None:
          return

     if execute_state.is_select:
          execute_state.statement = execute_state.statement.options(
               with_loader_criteria(
                    PaymentLinkConfig,
                    lambda cls: cls.tenant_id == tenant_id,
                    include_aliases=True,
               ),
               with_loader_criteria(
                    PaymentLink,
                    lambda cls: cls.tenant_id == tenant_id,
                    include_aliases=True,
               ),
               with_loader_criteria(
                    Transaction,
                    lambda cls: cls.payment_link_id.in_(
                         select(PaymentLink.id).where(PaymentLink.tenant_id == tenant_id)
                    ),
                    include_aliases=True,
               ),
          )
          return

     target = execute_state.bind_mapper.class_ if execute_state.bind_mapper else None
     if target in _SCOPED_ENTITIES:
          execute_state.statement = execute_state.statement.where(
               _tenant_criteria(target, tenant_id)
          )


@event.listens_for(Session, "before_flush")
def _enforce_tenant_ownership(session: Session, flush_context, instances) -> None:
     tenant_id = _current_tenant.get()
     bypassed = isolation_bypassed()

     for obj in session.new:
          if not isinstance(obj, TenantOwned):
               continue
          if obj.tenant_id is None:
               if tenant_id is None:
                    raise TenantContextMissing(
                         f"Cannot create {type(obj).__name__} outside of a tenant scope"
                    )
               obj.tenant_id = tenant_id

     for obj in list(session.dirty) + list(session.deleted):
          if not isinstance(obj, TenantOwned):
               continue
          history = inspect(obj).attrs.tenant_id.history
          if history.deleted and history.deleted[0] is not None:
               raise TenantIsolationViolation("The owner of a row cannot be changed")
          if tenant_id is not None and not bypassed and obj.tenant_id != tenant_id:
               logger.error(
                    "cross_tenant_write_blocked",
                    entity=type(obj).__name__,
                    entity_id=getattr(obj, "id", None),
               )
               raise TenantIsolationViolation(f"{type(obj).__name__} not found")
