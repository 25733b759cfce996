# logging_config.py
"""
Structured logging configuration.

Every module logs through structlog with snake_case event names:

     logger = structlog.get_logger(__name__)
     logger.info("payment_link_created", link_id=link.id, provider="stripe")

The tenant scope binds tenant_id into the structlog contextvars, so every
event emitted inside a request carries it without being passed around.
"""
import logging
import sys
from typing import Any, Optional

import structlog

from config import Settings, get_settings


def add_app_context(logger: Any, method_name: str, event_dict: dict) -> dict:
     event_dict["app_env"] = get_settings().app_env
     return event_dict


def setup_logging(settings: Optional[Settings] = None) -> None:
     """
     Configure structlog and the standard library root logger.

     JSON output by default; LOG_JSON=false switches to the console renderer
     for local development.
     """
     settings = settings or get_settings()
     level = getattr(logging, settings.log_level, logging.INFO)

     renderer = (
          structlog.processors.JSONRenderer()
          if settings.log_json
          else structlog.dev.ConsoleRenderer()
     )

     structlog.configure(
          processors=[
               structlog.contextvars.merge_contextvars,
               structlog.stdlib.filter_by_level,
               structlog.stdlib.add_logger_name,
               structlog.stdlib.add_log_level,
               structlog.processors.TimeStamper(fmt="iso"),
               structlog.processors.StackInfoRenderer(),
               structlog.processors.format_exc_info,
               add_app_context,
               renderer,
          ],
          wrapper_class=structlog.stdlib.BoundLogger,
          context_class=dict,
          logger_factory=structlog.stdlib.LoggerFactory(),
          cache_logger_on_first_use=True,
     )

     root_logger = logging.getLogger()
     root_logger.setLevel(level)
     for handler in root_logger.handlers[:]:
          root_logger.removeHandler(handler)
     handler = logging.StreamHandler(sys.stdout)
     handler.setFormatter(logging.Formatter("%(message)s"))
     root_logger.addHandler(handler)

     # Quiet down chatty libraries
     logging.getLogger("urllib3").setLevel(logging.WARNING)
     logging.getLogger("sqlalchemy.engine").setLevel(
          logging.INFO if settings.sql_echo else logging.WARNING
     )
