"""Periodic cleanup of expired refresh tokens, blacklist entries and login-attempt records.

Each job opens its own unit of work and never raises into the scheduler.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from tickr.config import Settings
from tickr.core.clock import Clock, utc_now
from tickr.repositories.base import RepositoryProvider
from tickr.services.login_attempts import LoginAttemptGuard
from tickr.services.refresh_tokens import RefreshTokenService, sweep_expired_refresh_tokens
from tickr.services.token_blacklist import sweep_expired_blacklist_entries

logger = logging.getLogger(__name__)


async def run_refresh_token_cleanup(provider: RepositoryProvider, clock: Clock = utc_now) -> int:
    now = clock()
    try:
        async with provider.transaction() as repos:
            deleted = await sweep_expired_refresh_tokens(repos.refresh_tokens, now)
            stats = await RefreshTokenService(repos.refresh_tokens, clock=clock).statistics(now)
    except Exception as e:
        logger.exception("Refresh token cleanup failed: %s", e)
        return 0
    logger.info(
        "Refresh token cleanup: deleted %d expired token(s); %d active remain",
        deleted,
        stats["active"],
    )
    return deleted


async def run_blacklist_cleanup(provider: RepositoryProvider, clock: Clock = utc_now) -> int:
    try:
        async with provider.transaction() as repos:
            deleted = await sweep_expired_blacklist_entries(repos.blacklisted_tokens, clock())
    except Exception as e:
        logger.exception("Blacklist cleanup failed: %s", e)
        return 0
    logger.info("Blacklist cleanup: deleted %d expired entr(ies)", deleted)
    return deleted


async def run_login_attempt_sweep(guard: LoginAttemptGuard, clock: Clock = utc_now) -> int:
    try:
        evicted = await guard.sweep(clock())
    except Exception as e:
        logger.exception("Login attempt sweep failed: %s", e)
        return 0
    if evicted:
        logger.debug("Login attempt sweep: evicted %d record(s)", evicted)
    return evicted


def schedule_maintenance(
    scheduler: AsyncIOScheduler,
    provider: RepositoryProvider,
    guard: LoginAttemptGuard,
    settings: Settings,
    clock: Clock = utc_now,
) -> None:
    scheduler.add_job(
        run_refresh_token_cleanup,
        "cron",
        hour=settings.refresh_token_cleanup_hour,
        minute=0,
        timezone="UTC",
        args=[provider, clock],
        id="refresh_token_cleanup",
        replace_existing=True,
    )
    scheduler.add_job(
        run_blacklist_cleanup,
        "cron",
        hour=settings.blacklist_cleanup_hour,
        minute=0,
        timezone="UTC",
        args=[provider, clock],
        id="blacklist_cleanup",
        replace_existing=True,
    )
    scheduler.add_job(
        run_login_attempt_sweep,
        "interval",
        minutes=settings.login_attempt_sweep_minutes,
        args=[guard, clock],
        id="login_attempt_sweep",
        replace_existing=True,
    )
