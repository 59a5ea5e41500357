"""
Outbox Worker Job: standalone notification delivery.

Runs the same OutboxWorker the API process starts in its lifespan, for
deployments that disable the in-process worker (OUTBOX_WORKER_ENABLED=false)
and run delivery as its own process or as a cron-driven single pass.

Only one worker may run per deployment.
"""

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.config import get_settings
from ..core.database import build_engine
from ..services.audit import QueuedAuditSink
from ..services.notification_service import MailSender, OutboxWorker, build_mail_sender

logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    webhook_url: str,
    title: str,
    message: str,
    details: dict | None = None,
) -> None:
    """Post a crash alert to a generic webhook (PagerDuty, Opsgenie, custom)."""
    logger.critical(f"[WORKER ALERT] {title}: {message} | Details: {details or {}}")
    if not webhook_url:
        return

    payload = {
        "title": title,
        "message": message,
        "severity": "critical",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "ops-journal-worker",
        "details": details or {},
    }
    try:
        async with httpx.AsyncClient() as client:
            await client.post(webhook_url, json=payload, timeout=10)
    except httpx.HTTPError as e:
        logger.error(f"Failed to send webhook alert: {e}")


# =============================================================================
# JOB
# =============================================================================


async def run_outbox_worker(
    database_url: str,
    mail_sender: MailSender,
    batch_size: int = 20,
    poll_interval_seconds: float = 15.0,
    base_url: str = "http://localhost:3000",
    once: bool = False,
    alert_webhook_url: str = "",
) -> dict[str, Any]:
    """
    Drain the outbox.

    With ``once`` the job delivers a single batch and returns; otherwise it
    polls every ``poll_interval_seconds`` until cancelled.

    Returns:
        Job result summary
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting outbox worker at {start_time.isoformat()}")

    engine = build_engine(database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    audit_sink = QueuedAuditSink(session_factory)
    worker = OutboxWorker(
        session_factory,
        mail_sender,
        audit_sink,
        batch_size=batch_size,
        poll_interval_seconds=poll_interval_seconds,
        base_url=base_url,
    )

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "batches": 0,
        "notifications_sent": 0,
        "notifications_failed": 0,
        "errors": [],
    }

    try:
        while True:
            sent, failed, errors = await worker.process_pending_notifications()
            results["batches"] += 1
            results["notifications_sent"] += sent
            results["notifications_failed"] += failed
            results["errors"].extend(errors)
            await audit_sink.flush()

            if once:
                break
            await asyncio.sleep(poll_interval_seconds)

    except Exception as e:
        error_msg = f"Outbox worker failed: {str(e)}"
        logger.error(error_msg)
        results["errors"].append(error_msg)

        await send_alert(
            alert_webhook_url,
            title="Outbox Worker Failed",
            message="The notification outbox worker crashed unexpectedly.",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],  # Last 500 chars
                "started_at": results["started_at"],
                "sent_before_crash": results["notifications_sent"],
            },
        )
        raise

    finally:
        await audit_sink.flush()
        await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Outbox worker finished in {results['duration_seconds']:.2f}s: "
        f"{results['notifications_sent']} sent, {results['notifications_failed']} failed"
    )
    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the outbox worker."""
    import argparse

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Deliver pending change notifications")
    parser.add_argument(
        "--database-url",
        default=settings.database_url_async,
        help="Database connection string",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.outbox_batch_size,
        help="Rows claimed per batch",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.outbox_poll_interval_seconds,
        help="Seconds between batches",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Deliver a single batch and exit",
    )

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        results = asyncio.run(run_outbox_worker(
            database_url=args.database_url,
            mail_sender=build_mail_sender(settings),
            batch_size=args.batch_size,
            poll_interval_seconds=args.interval,
            base_url=settings.app_base_url,
            once=args.once,
            alert_webhook_url=settings.alert_webhook_url,
        ))
        print(f"Job completed: {results}")
    except KeyboardInterrupt:
        print("Worker stopped")
    except Exception as e:
        print(f"Job failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
