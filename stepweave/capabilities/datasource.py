"""Data source capability: queries a configured backend."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import asyncpg

from ..config import DataSourceConfig
from ..contracts import CapabilityError
from ..persistence.models import utcnow

logger = logging.getLogger(__name__)

SAMPLE_TABLES: Dict[str, list[dict[str, Any]]] = {
    "customers": [
        {"id": 1, "name": "John Doe", "email": "john@example.com", "total_spent": 1250.00, "status": "active"},
        {"id": 2, "name": "Jane Smith", "email": "jane@example.com", "total_spent": 890.50, "status": "active"},
        {"id": 3, "name": "Bob Johnson", "email": "bob@example.com", "total_spent": 2100.75, "status": "premium"},
        {"id": 4, "name": "Alice Brown", "email": "alice@example.com", "total_spent": 450.25, "status": "active"},
        {"id": 5, "name": "Charlie Wilson", "email": "charlie@example.com", "total_spent": 3200.00, "status": "premium"},
    ],
    "orders": [
        {"id": 1, "customer_id": 1, "product": "Laptop", "amount": 999.99, "date": "2024-01-15"},
        {"id": 2, "customer_id": 1, "product": "Mouse", "amount": 25.99, "date": "2024-01-16"},
        {"id": 3, "customer_id": 2, "product": "Keyboard", "amount": 89.99, "date": "2024-01-17"},
        {"id": 4, "customer_id": 3, "product": "Monitor", "amount": 299.99, "date": "2024-01-18"},
        {"id": 5, "customer_id": 3, "product": "Webcam", "amount": 79.99, "date": "2024-01-19"},
    ],
    "products": [
        {"id": 1, "name": "Laptop", "category": "Electronics", "price": 999.99, "stock": 50},
        {"id": 2, "name": "Mouse", "category": "Accessories", "price": 25.99, "stock": 200},
        {"id": 3, "name": "Keyboard", "category": "Accessories", "price": 89.99, "stock": 150},
        {"id": 4, "name": "Monitor", "category": "Electronics", "price": 299.99, "stock": 75},
        {"id": 5, "name": "Webcam", "category": "Electronics", "price": 79.99, "stock": 100},
    ],
}


def _table_name(config: Dict[str, Any], input_data: Any) -> Optional[str]:
    if config.get("table"):
        return str(config["table"])
    if isinstance(input_data, dict) and input_data.get("table"):
        return str(input_data["table"])
    return None


class DataSourceCapability:
    """Runs a query against the step's backend.

    Postgres pools are cached per distinct connection configuration and shared
    by every step that uses the same settings.
    """

    def __init__(self, config: Optional[DataSourceConfig] = None) -> None:
        self._config = config or DataSourceConfig()
        self._pools: Dict[Tuple[Any, ...], asyncpg.Pool] = {}
        self._lock = asyncio.Lock()

    async def execute(self, config: Dict[str, Any], input_data: Any) -> Any:
        backend = config.get("backend")
        if self._config.mock_mode or backend == "mock":
            return self._query_sample(config, input_data)
        if backend == "postgresql":
            return await self._query_postgres(config, input_data)
        raise CapabilityError(f"Unsupported data source backend: {backend}")

    # ------------------------------------------------------------------
    def _query_sample(self, config: Dict[str, Any], input_data: Any) -> Dict[str, Any]:
        table = (_table_name(config, input_data) or "customers").lower()
        rows = SAMPLE_TABLES.get(table)
        if rows is None:
            raise CapabilityError(f"Table not found: {table}")
        return {
            "rows": [dict(row) for row in rows],
            "row_count": len(rows),
            "query": f"SELECT * FROM {table}",
            "executed_at": utcnow().isoformat(),
            "source": "mock",
        }

    @staticmethod
    def _pool_key(config: Dict[str, Any]) -> Tuple[Any, ...]:
        return (
            config.get("host"),
            config.get("port") or 5432,
            config.get("database"),
            config.get("username"),
            config.get("password"),
            bool(config.get("ssl")),
        )

    async def _get_pool(self, config: Dict[str, Any]) -> asyncpg.Pool:
        key = self._pool_key(config)
        async with self._lock:
            pool = self._pools.get(key)
            if pool is None:
                logger.info(
                    f"Opening postgres pool for {config.get('host')}/{config.get('database')}"
                )
                pool = await asyncpg.create_pool(
                    host=config.get("host"),
                    port=config.get("port") or 5432,
                    database=config.get("database"),
                    user=config.get("username"),
                    password=config.get("password"),
                    ssl="require" if config.get("ssl") else None,
                    min_size=1,
                    max_size=self._config.pool_max_size,
                    timeout=self._config.query_timeout_seconds,
                )
                self._pools[key] = pool
        return pool

    async def _query_postgres(
        self, config: Dict[str, Any], input_data: Any
    ) -> Dict[str, Any]:
        query = config.get("query")
        params: list[Any] = list(config.get("parameters") or [])
        if not query:
            table = _table_name(config, input_data)
            if not table:
                raise CapabilityError("Data source step needs a 'query' or a 'table'")
            # quote_ident equivalent, identifiers cannot be bound as parameters
            query = 'SELECT * FROM "{}"'.format(table.replace('"', '""'))

        try:
            pool = await self._get_pool(config)
            async with pool.acquire() as conn:
                records = await conn.fetch(
                    query, *params, timeout=self._config.query_timeout_seconds
                )
        except asyncio.TimeoutError:
            raise
        except (asyncpg.PostgresError, OSError) as e:
            raise CapabilityError(f"Database query failed: {e}") from e

        rows = [json.loads(json.dumps(dict(record), default=str)) for record in records]
        return {
            "rows": rows,
            "row_count": len(rows),
            "query": query,
            "executed_at": utcnow().isoformat(),
            "source": "postgresql",
        }

    async def close(self) -> None:
        """Close every cached connection pool."""
        async with self._lock:
            for pool in self._pools.values():
                await pool.close()
            self._pools.clear()
