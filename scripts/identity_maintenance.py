#!/usr/bin/env python3
"""
Identity maintenance - purge stale OTP records and deactivate lapsed sessions.

Advisory housekeeping: nothing in the auth flow depends on it running.

Usage:
    # Both tasks (default - for cron)
    python3 scripts/identity_maintenance.py

    # Only one task
    python3 scripts/identity_maintenance.py --only otps
    python3 scripts/identity_maintenance.py --only sessions
"""

import argparse
import asyncio
import sys
from datetime import UTC, datetime, timedelta

from app.config import settings
from app.db.session import close_engines, get_session
from app.exceptions import StoreUnavailableError
from app.observability.logging import get_logger, setup_logging
from app.services.otp import OtpEngine, OtpPolicy
from app.services.sessions import SessionManager
from app.services.tokens import TokenService

logger = get_logger("identity_maintenance")


async def purge_otps(now: datetime) -> int:
    async with get_session() as db:
        engine = OtpEngine(db, secret=settings.jwt_secret, policy=OtpPolicy.from_settings(settings))
        return await engine.purge_expired(now)


async def expire_sessions(now: datetime) -> int:
    tokens = TokenService(
        secret=settings.jwt_secret,
        access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
        algorithm=settings.jwt_algorithm,
        issuer=settings.jwt_issuer,
    )
    async with get_session() as db:
        return await SessionManager(db, tokens).deactivate_expired(now)


async def run(only: str | None) -> int:
    now = datetime.now(UTC)
    try:
        if only in (None, "otps"):
            purged = await purge_otps(now)
            logger.info("maintenance_otps_purged", count=purged)
        if only in (None, "sessions"):
            expired = await expire_sessions(now)
            logger.info("maintenance_sessions_expired", count=expired)
    except StoreUnavailableError as e:
        logger.error("maintenance_failed", operation=e.operation)
        return 1
    finally:
        await close_engines()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Identity store housekeeping")
    parser.add_argument("--only", choices=("otps", "sessions"), help="Run a single task")
    args = parser.parse_args()

    setup_logging()
    return asyncio.run(run(args.only))


if __name__ == "__main__":
    sys.exit(main())
