"""Read-only database handle.

The repository only needs ``fetch``, ``fetchrow`` and ``fetchval`` with
positional ``$n`` parameters, which both asyncpg.Pool and asyncpg.Connection
provide. Sessions are opened read-only at the server.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from syncwatch.logging import get_logger

if TYPE_CHECKING:
    from syncwatch.config import ReporterConfig


@runtime_checkable
class QueryExecutor(Protocol):
    async def fetch(self, query: str, *args: Any) -> list[Any]: ...

    async def fetchrow(self, query: str, *args: Any) -> Any: ...

    async def fetchval(self, query: str, *args: Any) -> Any: ...


async def create_pool(config: ReporterConfig) -> Any:
    """Open an asyncpg pool whose sessions default to read-only transactions.

    No connection is made up front: an unreachable database shows up as
    per-indicator query failures instead of a startup crash.
    """
    import asyncpg

    pool = await asyncpg.create_pool(
        dsn=config.database_url,
        min_size=0,
        max_size=config.db_pool_max_size,
        command_timeout=config.effective_tick_deadline,
        server_settings={
            "default_transaction_read_only": "on",
            "application_name": config.application_tag or "syncwatch",
        },
    )
    get_logger(__name__).info("db.pool.created", max_size=config.db_pool_max_size)
    return pool
