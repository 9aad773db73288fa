"""
NDR Jobs

Periodic auto-resolution of pending NDRs. The job only wraps
NDRService.auto_resolve_ndrs; the engine itself holds no schedule.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ordercore.services.ndr_service import NDRService

logger = logging.getLogger(__name__)


async def auto_resolve_pending_ndrs(ndr_service: NDRService) -> Optional[Dict[str, Any]]:
    """
    Propose actions for pending NDRs and contact their customers.

    Failures are logged rather than raised so the next run is still scheduled.
    """
    logger.info("Starting NDR auto-resolution...")
    start_time = datetime.now(timezone.utc)

    try:
        result = await ndr_service.auto_resolve_ndrs()
    except Exception as e:
        logger.error(f"NDR auto-resolution job failed: {e}")
        return None

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"NDR auto-resolution completed in {duration:.2f}s: "
        f"{result.processed} processed, {result.skipped} skipped, {result.failed} failed"
    )
    for failure in result.failures:
        logger.warning(f"NDR {failure.ndr_id}: {failure.reason}")

    return {
        "processed": result.processed,
        "skipped": result.skipped,
        "failed": result.failed,
        "duration_seconds": duration,
    }
