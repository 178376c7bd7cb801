from tickr.repositories.base import (
    BlacklistedTokenRepository,
    RefreshTokenRepository,
    Repositories,
    RepositoryProvider,
    UserRepository,
)
from tickr.repositories.memory import MemoryRepositoryProvider
from tickr.repositories.sql import SqlRepositoryProvider

__all__ = [
    "BlacklistedTokenRepository",
    "MemoryRepositoryProvider",
    "RefreshTokenRepository",
    "Repositories",
    "RepositoryProvider",
    "SqlRepositoryProvider",
    "UserRepository",
]
