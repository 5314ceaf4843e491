import asyncio
import logging
import signal
import sys
from typing import List

from .config import settings
from .formatting import format_count
from .service import MaintenanceService, configure_logging

configure_logging()

logger = logging.getLogger("main")


async def sync_rules(rule_ids: List[int]):
    """Sync & evaluate the given rules (all enabled rules when none are given) and wait for them to finish."""
    service = MaintenanceService(
        on_rule_synced=lambda rule_id: logger.info(f"Rule {rule_id} synced and evaluated"),
        on_error=lambda message: logger.error(message),
    )
    status_task = None
    try:
        await service.setup()
        if settings.HTTP_SERVER_ENABLED:
            status_task = asyncio.create_task(service.serve_status())

        rules = [r for r in service.rules if (r.id in rule_ids if rule_ids else r.enabled)]
        missing = set(rule_ids) - {r.id for r in rules}
        if missing:
            logger.warning(f"Unknown rule ids: {sorted(missing)}")

        for rule in rules:
            try:
                await service.sync_and_evaluate(rule)
            except Exception as e:
                logger.error(f"Could not sync rule {rule.id} ({rule.name}): {e}")

        await service.poller.wait()

        for rule in service.rules:
            if rule.id in {r.id for r in rules}:
                logger.info(f"{rule.name}: {format_count(rule.candidate_count)} candidates, "
                            f"{format_count(rule.exclusion_count)} excluded")
    finally:
        if status_task is not None:
            status_task.cancel()
        await service.close()


def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)


if __name__ == "__main__":
    signal.signal(signal.SIGTERM, handle_sigterm)
    try:
        asyncio.run(sync_rules([int(arg) for arg in sys.argv[1:]]))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
