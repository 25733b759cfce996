# routers/__init__.py
from .payment_configs import router as payment_configs_router
from .payment_links import router as payment_links_router
from .transactions import router as transactions_router
from .webhooks import router as webhooks_router

__all__ = [
     "payment_configs_router",
     "payment_links_router",
     "transactions_router",
     "webhooks_router",
]
