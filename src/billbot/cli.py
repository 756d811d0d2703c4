"""Command-line interface for connecting mailboxes and scanning bills."""

import argparse
import logging
import sys
from typing import Optional

from .config import Config
from .errors import AuthError
from .ingestion.oauth import (
    GoogleOAuthClient,
    create_code_verifier,
    decode_state,
    encode_state,
)
from .notify.formatter import format_error, format_summary
from .pipeline import BillScanPipeline
from .storage.bills import BillStore
from .storage.database import DatabaseClient


def build_oauth_client(config: Config) -> GoogleOAuthClient:
    return GoogleOAuthClient(
        client_id=config.google_oauth2_client_id,
        client_secret=config.google_oauth2_client_secret,
        redirect_uri=config.google_oauth2_redirect_uri,
        timeout=config.request_timeout_sec,
    )


def cmd_connect(args, config: Config) -> int:
    """Print the consent URL for a user."""
    verifier = create_code_verifier()
    state = encode_state(args.user, verifier)
    url = build_oauth_client(config).authorization_url(state, verifier)

    print("Open this URL to connect Gmail (read-only):")
    print(url)
    print(f"\nState: {state}")
    return 0


def cmd_authorize(args, config: Config) -> int:
    """Exchange the code returned by the consent screen."""
    try:
        user_id, verifier = decode_state(args.state)
    except AuthError as e:
        print(f"❌ {e}")
        return 1

    db = DatabaseClient(config.database_url)
    db.init_schema()
    pipeline = BillScanPipeline.from_config(config, db=db)

    try:
        record = pipeline.token_store.authorize(user_id, args.code, verifier)
    except AuthError as e:
        print(f"❌ {e}")
        return 1
    finally:
        db.close()

    print(f"✅ Gmail connected for user {record.user_id} "
          f"(token expires {record.expires_at.isoformat()})")
    return 0


def cmd_scan(args, config: Config) -> int:
    """Run a scan in the foreground."""
    db = DatabaseClient(config.database_url)
    db.init_schema()
    pipeline = BillScanPipeline.from_config(config, db=db)
    days_back = args.days_back if args.days_back is not None else config.days_back

    try:
        if args.no_notify or not args.channel:
            result = pipeline.execute(args.user, days_back=days_back)
        else:
            result = pipeline.run(args.user, args.channel, days_back=days_back)
    finally:
        db.close()

    if result.success:
        print(format_summary(result.bills, days_back=days_back))
    else:
        print(format_error(result.error))

    m = result.metrics
    if m is not None:
        stages = ", ".join(f"{name}: {sec:.3f}s" for name, sec in m.stage_times_sec.items())
        print(f"\nPerformance: {m.duration_sec:.2f}s ({stages or 'no stages run'})")
        print(f"  Candidates: {m.candidates}, PDFs: {m.pdfs_fetched}, "
              f"extracted: {m.bills_extracted}, stored: {m.bills_stored}")

    return 0 if result.success else 1


def cmd_recent(args, config: Config) -> int:
    """Print the stored bills without scanning."""
    db = DatabaseClient(config.database_url)
    days_back = args.days_back if args.days_back is not None else config.days_back

    try:
        records = BillStore(db, max_bills_per_user=config.max_bills_per_user).recent(
            args.user, days_back=days_back
        )
    finally:
        db.close()

    print(format_summary([rec.to_parsed() for rec in records], days_back=days_back))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="billbot", description="Utility bill scanner")
    sub = parser.add_subparsers(dest="command", required=True)

    connect = sub.add_parser("connect", help="Print the Gmail authorization URL")
    connect.add_argument("--user", required=True, help="Chat user id")
    connect.set_defaults(func=cmd_connect)

    authorize = sub.add_parser("authorize", help="Exchange an authorization code")
    authorize.add_argument("--code", required=True)
    authorize.add_argument("--state", required=True)
    authorize.set_defaults(func=cmd_authorize)

    scan = sub.add_parser("scan", help="Scan the mailbox for bills")
    scan.add_argument("--user", required=True)
    scan.add_argument("--channel", help="Channel to deliver the result to")
    scan.add_argument("--days-back", type=int)
    scan.add_argument("--no-notify", action="store_true", help="Print only, do not deliver")
    scan.set_defaults(func=cmd_scan)

    recent = sub.add_parser("recent", help="Show stored bills")
    recent.add_argument("--user", required=True)
    recent.add_argument("--days-back", type=int)
    recent.set_defaults(func=cmd_recent)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    config = Config.from_env()

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
