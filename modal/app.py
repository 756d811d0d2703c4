"""Bill scanner deployment - on-demand scans and a daily scheduled scan."""

import logging
import sys
from pathlib import Path
from typing import Optional

import modal

# Create Modal app
app = modal.App("billbot")

# Create image with all dependencies
image = (
    modal.Image.debian_slim(python_version="3.12")
    .pip_install(
        "psycopg[binary]==3.2.3",
        "openai==1.59.5",
        "pydantic==2.12.4",
        "requests==2.32.3",
    )
    .add_local_dir(Path(__file__).parent.parent / "src" / "billbot", "/root/billbot")
)

# Modal secrets
secrets = [modal.Secret.from_name("billbot-secrets")]

logger = logging.getLogger(__name__)


def _setup():
    sys.path.insert(0, "/root")

    from billbot.config import Config

    config = Config.from_env()
    logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO))
    return config


@app.function(image=image, secrets=secrets, timeout=600)
def scan_bills(user_id: str, channel_id: str, days_back: Optional[int] = None) -> dict:
    """Scan one user's mailbox and post the result to the channel.

    The chat command layer calls this with .spawn() so it can acknowledge
    the command immediately.

    Args:
        user_id: Chat user id that owns the token
        channel_id: Channel the summary or error goes to
        days_back: Search window (defaults to DAYS_BACK)

    Returns:
        dict: Scan outcome and metrics
    """
    config = _setup()

    from billbot.pipeline import BillScanPipeline
    from billbot.storage.database import DatabaseClient

    db = DatabaseClient(config.database_url)
    db.init_schema()

    try:
        pipeline = BillScanPipeline.from_config(config, db=db)
        result = pipeline.run(user_id, channel_id, days_back=days_back)
    finally:
        db.close()

    return {
        "user_id": user_id,
        "success": result.success,
        "bills": len(result.bills),
        "error": result.error_message,
        "metrics": result.metrics.model_dump() if result.metrics else None,
    }


@app.function(
    image=image,
    secrets=secrets,
    schedule=modal.Cron("0 21 * * *"),  # 08:00 Melbourne (AEDT)
    timeout=3600,
)
def scheduled_scan() -> dict:
    """Scan every connected user.

    Results are posted to SCAN_CHANNEL_ID when it is set; otherwise bills are
    only persisted.
    """
    config = _setup()

    from billbot.notify.formatter import format_error, format_summary
    from billbot.pipeline import BillScanPipeline
    from billbot.storage.database import DatabaseClient

    logger.info("=" * 80)
    logger.info("SCHEDULED SCAN STARTED")
    logger.info("=" * 80)

    db = DatabaseClient(config.database_url)
    db.init_schema()

    results = []
    try:
        pipeline = BillScanPipeline.from_config(config, db=db)
        users = pipeline.token_store.list_users()
        logger.info(f"Found {len(users)} connected users")

        for user_id in users:
            if config.scan_channel_id:
                result = pipeline.run(user_id, config.scan_channel_id)
            else:
                result = pipeline.execute(user_id)
                text = format_summary(result.bills, config.days_back) if result.success \
                    else format_error(result.error)
                logger.info(f"Result for user {user_id}: {text}")

            results.append({
                "user_id": user_id,
                "success": result.success,
                "bills": len(result.bills),
                "error": result.error_message,
            })
    finally:
        db.close()

    succeeded = sum(1 for r in results if r["success"])
    logger.info("=" * 80)
    logger.info("SCHEDULED SCAN COMPLETE")
    logger.info("=" * 80)
    logger.info(f"Users scanned: {len(results)}, succeeded: {succeeded}")

    return {
        "users_scanned": len(results),
        "succeeded": succeeded,
        "results": results,
    }


@app.local_entrypoint()
def main(user_id: str = "", channel_id: str = "", days_back: int = 30):
    """Local entrypoint for testing.

    Args:
        user_id: Scan a single user (default: run the scheduled scan)
        channel_id: Channel for the single-user scan
        days_back: Search window for the single-user scan
    """
    if user_id:
        print(f"Scanning bills for user {user_id} (last {days_back} days)")
        result = scan_bills.remote(user_id=user_id, channel_id=channel_id, days_back=days_back)
    else:
        print("Running scheduled scan")
        result = scheduled_scan.remote()
    print(f"\nResult: {result}")
