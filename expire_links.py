# expire_links.py
"""
Scheduled job: mark pending payment links past their expiry as expired.

Run once from cron, or keep it running with an interval:
    python expire_links.py
    python expire_links.py --interval 300
"""
import argparse
import time

import structlog
from sqlalchemy.exc import SQLAlchemyError

from database import get_session_context
from logging_config import setup_logging
from services.payment_link_service import PaymentLinkService

logger = structlog.get_logger(__name__)


def run_once() -> int:
    with get_session_context() as db:
        return PaymentLinkService.expire_overdue_links(db)


def run_forever(interval: int) -> None:
    logger.info("expiry_worker_started", interval_seconds=interval)
    try:
        while True:
            try:
                run_once()
            except SQLAlchemyError as e:
                # Retried on the next sweep
                logger.error("expiry_sweep_failed", error=str(e))
            time.sleep(interval)
    except KeyboardInterrupt:
        pass
    finally:
        logger.info("expiry_worker_stopped")


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Expire overdue payment links")
    parser.add_argument(
        "--interval", type=int, default=0, help="Seconds between sweeps (0 runs a single sweep)"
    )
    args = parser.parse_args(argv)

    setup_logging()
    if args.interval > 0:
        run_forever(args.interval)
    else:
        expired = run_once()
        logger.info("expiry_sweep_finished", expired=expired)


if __name__ == "__main__":
    main()
