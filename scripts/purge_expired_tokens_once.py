#!/usr/bin/env python3
"""One-shot maintenance: purge expired token state, optionally revoke a user."""

from __future__ import annotations

import argparse
import sys
import time

from dotenv import load_dotenv

from aegisx.auth.audit import SYSTEM_ACTOR, AuditPublisher
from aegisx.auth.errors import AuthError
from aegisx.auth.repository import AuthRepository
from aegisx.auth.service import AuthService
from aegisx.core.config import AppConfig
from aegisx.core.logging import setup_logging


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Purge expired refresh tokens, access-token revocations and password resets."
    )
    parser.add_argument(
        "--now",
        type=int,
        default=None,
        help="Epoch seconds treated as the current time (default: wall clock).",
    )
    parser.add_argument(
        "--revoke-user",
        default="",
        help="Also revoke every refresh token and api key of this user id.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    load_dotenv()
    config = AppConfig.from_env()
    setup_logging(config.logging.level)
    now = args.now if args.now is not None else int(time.time())

    repo = AuthRepository(config.storage)
    audit = AuditPublisher.from_config(config.audit)
    try:
        refresh_purged = repo.purge_expired_refresh_tokens(now)
        access_purged = repo.purge_expired_access_revocations(now)
        resets_purged = repo.purge_expired_password_resets(now)
        print(f"Storage: {'mongodb' if repo.uses_mongo else 'file'}")
        print(f"Expired refresh tokens purged: {refresh_purged}")
        print(f"Expired access revocations purged: {access_purged}")
        print(f"Expired password resets purged: {resets_purged}")

        if args.revoke_user:
            service = AuthService(repo, config.auth, audit=audit)
            sessions = service.revoke_user_sessions(args.revoke_user, actor=SYSTEM_ACTOR)
            keys = service.revoke_user_api_keys(args.revoke_user, actor=SYSTEM_ACTOR)
            print(f"Refresh tokens revoked for {args.revoke_user}: {sessions}")
            print(f"Api keys revoked for {args.revoke_user}: {keys}")
        return 0
    except AuthError as exc:
        print(f"ERROR: {exc.message} ({exc.reason})", file=sys.stderr)
        return 1
    finally:
        audit.close()
        repo.close()


if __name__ == "__main__":
    raise SystemExit(main())
