# models/base.py
import re
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String
from sqlalchemy.orm import DeclarativeBase, declared_attr


def utcnow() -> datetime:
     """Naive UTC timestamp, the format every DateTime column stores."""
     return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> str:
     return str(uuid.uuid4())


class Base(DeclarativeBase):
     """
     Base class for all SQLAlchemy models.
     Provides common configuration and mixins.
     """

     @declared_attr.directive
     def __tablename__(cls) -> str:
          """
          Automatically generate table name from class name.
          Example: PaymentLinkConfig -> payment_link_configs
          """
          name = re.sub(r'(?<!^)(?=[A-Z])', '_', cls.__name__).lower()
          # Pluralize (simple version)
          if name.endswith('y'):
               return name[:-1] + 'ies'
          elif name.endswith('s'):
               return name + 'es'
          return name + 's'


class TenantOwned:
     """
     Mixin for rows owned directly by one tenant.

     The owner is stamped on insert by the tenant scope and never changes
     afterwards; reads, updates and deletes are filtered on it automatically
     (see services/tenant_context.py).
     """

     @declared_attr
     def tenant_id(cls):
          return Column(String(64), nullable=False, index=True)
