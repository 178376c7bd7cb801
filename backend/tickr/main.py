import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from tickr.api.auth_gate import AuthGateMiddleware, NotAuthenticatedError, not_authenticated_handler
from tickr.api.v1 import auth

# App loggers print to stdout; tickr.* at DEBUG so rejected tokens are visible in development
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("tickr").setLevel(logging.DEBUG)
from tickr.config import Settings, settings
from tickr.core.clock import Clock, utc_now
from tickr.repositories.base import RepositoryProvider
from tickr.services.http_client import close_http_client, init_http_client
from tickr.services.login_attempts import InMemoryAttemptStore, LoginAttemptGuard, RedisAttemptStore
from tickr.services.maintenance import schedule_maintenance
from tickr.services.password_policy import PasswordValidator
from tickr.services.token_codec import build_token_codec
from prometheus_client import make_asgi_app

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def init_auth_state(
    app: FastAPI,
    config: Settings,
    *,
    repositories: RepositoryProvider | None = None,
    clock: Clock = utc_now,
    jwks_fetcher=None,
) -> None:
    """Build the auth collaborators onto app.state. Raises ConfigurationError on bad JWT settings."""
    if repositories is None:
        from tickr.db.session import async_session_maker
        from tickr.repositories.sql import SqlRepositoryProvider

        repositories = SqlRepositoryProvider(async_session_maker)

    store = RedisAttemptStore.from_url(config.redis_url) if config.redis_url else InMemoryAttemptStore()
    app.state.token_codec = build_token_codec(config, clock=clock, jwks_fetcher=jwks_fetcher)
    app.state.repositories = repositories
    app.state.login_guard = LoginAttemptGuard(
        store,
        max_attempts=config.login_max_attempts,
        lockout_duration=timedelta(minutes=config.login_lockout_minutes),
        clock=clock,
    )
    app.state.password_validator = PasswordValidator.from_settings(config)
    app.state.refresh_validity = timedelta(days=config.refresh_token_expire_days)
    logger.info(
        "Auth initialised: alg=%s issuer=%s audience=%s attempt_store=%s",
        app.state.token_codec.algorithm,
        config.jwt_issuer,
        config.jwt_audience,
        type(store).__name__,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ConfigurationError propagates: the process must not serve traffic with a broken JWT setup
    init_auth_state(app, settings)
    if settings.app_env != "production":
        from tickr.db.session import init_db

        await init_db()
    init_http_client(timeout=5.0)

    schedule_maintenance(scheduler, app.state.repositories, app.state.login_guard, settings)
    scheduler.start()
    yield
    scheduler.shutdown()
    await close_http_client()
    store = app.state.login_guard.store
    if isinstance(store, RedisAttemptStore):
        await store.close()


app = FastAPI(
    title="Tickr API",
    description="Tickr backend: JWT authentication, refresh tokens, revocation",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_exception_handler(NotAuthenticatedError, not_authenticated_handler)
app.add_middleware(AuthGateMiddleware)
app.include_router(auth.router, prefix="/api/v1")

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
def health():
    return {"status": "ok"}
