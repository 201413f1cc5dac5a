"""
PostgreSQL Object Store - ObjectStore implementation on asyncpg.

Objects live in the 'objects' table. resource_version is a counter bumped
on every write and checked on every update (optimistic concurrency);
generation is bumped when the spec changes.
"""

import asyncio
import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import asyncpg

from reconcilekit.errors import (
    AlreadyExistsError,
    ConflictError,
    InvalidError,
    NotFoundError,
    UnavailableError,
)
from reconcilekit.migrate import run_migrations
from reconcilekit.objects import Condition, ObjectKey, Resource
from reconcilekit.store import ObjectStore

logger = logging.getLogger(__name__)

# temporary conditions: the same call may succeed later
_UNAVAILABLE = (
    asyncpg.PostgresConnectionError,
    asyncpg.InsufficientResourcesError,
    asyncpg.OperatorInterventionError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


@contextmanager
def _translate_errors(kind: str, key: Optional[ObjectKey] = None):
    """
    Map asyncpg and transport failures onto StoreError kinds.

    Only Exception subclasses are translated; cancellation passes through.
    """
    try:
        yield
    except asyncpg.UniqueViolationError as e:
        raise AlreadyExistsError(
            f"{kind} {key} already exists", kind=kind, key=key
        ) from e
    except _UNAVAILABLE as e:
        raise UnavailableError(
            f"Object store unavailable: {type(e).__name__}: {e}", kind=kind, key=key
        ) from e
    except asyncpg.UndefinedTableError as e:
        raise UnavailableError(
            f"Object store schema is missing ({e}); run 'reconcilectl migrate'",
            kind=kind,
            key=key,
        ) from e
    except asyncpg.PostgresError as e:
        raise InvalidError(
            f"Object store rejected request: {type(e).__name__}: {e}",
            kind=kind,
            key=key,
        ) from e


def _version(obj: Resource) -> int:
    if obj.resource_version is None:
        raise ConflictError(
            f"{obj.kind} {obj.key} has no resource version; read it before writing",
            kind=obj.kind,
            key=obj.key,
        )
    try:
        return int(obj.resource_version)
    except ValueError as e:
        raise InvalidError(
            f"Malformed resource version {obj.resource_version!r}",
            kind=obj.kind,
            key=obj.key,
        ) from e


class PostgresObjectStore(ObjectStore):
    """Stores managed objects in PostgreSQL."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
        command_timeout: float = 60.0,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout = command_timeout
        self.pool: Optional[asyncpg.Pool] = None

    @classmethod
    def from_config(cls, cfg) -> "PostgresObjectStore":
        """Build a store from a DatabaseConfig."""
        return cls(
            host=cfg.host,
            port=cfg.port,
            database=cfg.database,
            user=cfg.user,
            password=cfg.password,
            min_pool_size=cfg.min_pool_size,
            max_pool_size=cfg.max_pool_size,
            command_timeout=cfg.command_timeout,
        )

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        with _translate_errors("connection"):
            self.pool = await asyncpg.create_pool(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self.password,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=self.command_timeout,
            )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self, dry_run: bool = False) -> List[str]:
        """Apply pending migrations. Returns the affected migration filenames."""
        self._ensure_connected()
        with _translate_errors("schema"):
            migrations = await run_migrations(self.pool, dry_run=dry_run)
        logger.info("Database schema initialized")
        return [m.filename for m in migrations]

    # ==================== Reads ====================

    async def get(self, kind: str, key: ObjectKey) -> Resource:
        self._ensure_connected()
        with _translate_errors(kind, key):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT * FROM objects
                    WHERE kind = $1 AND namespace = $2 AND name = $3
                    """,
                    kind,
                    key.namespace,
                    key.name,
                )
        if not row:
            raise NotFoundError(f"{kind} {key} not found", kind=kind, key=key)
        return self._parse_object_row(row)

    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[Resource]:
        self._ensure_connected()
        query = "SELECT * FROM objects WHERE kind = $1"
        params: List[Any] = [kind]
        param_count = 1

        if namespace is not None:
            param_count += 1
            query += f" AND namespace = ${param_count}"
            params.append(namespace)

        if labels:
            param_count += 1
            query += f" AND labels @> ${param_count}::jsonb"
            params.append(json.dumps(labels))

        query += " ORDER BY namespace, name"

        with _translate_errors(kind):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *params)
        return [self._parse_object_row(row) for row in rows]

    # ==================== Writes ====================

    async def create(self, obj: Resource) -> None:
        self._ensure_connected()
        if not obj.name or not obj.namespace:
            raise InvalidError(
                "Object name and namespace must not be empty", kind=obj.kind
            )
        with _translate_errors(obj.kind, obj.key):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO objects (
                        kind, namespace, name, finalizers, labels,
                        annotations, spec, status, conditions
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    RETURNING resource_version, generation
                    """,
                    obj.kind,
                    obj.namespace,
                    obj.name,
                    json.dumps(obj.finalizers),
                    json.dumps(obj.labels),
                    json.dumps(obj.annotations),
                    json.dumps(obj.spec),
                    json.dumps(obj.status),
                    json.dumps([c.to_dict() for c in obj.conditions]),
                )
        obj.resource_version = str(row["resource_version"])
        obj.generation = row["generation"]
        obj.deletion_timestamp = None
        logger.info(f"Created {obj.kind} {obj.key}")

    async def update(self, obj: Resource) -> None:
        self._ensure_connected()
        version = _version(obj)
        with _translate_errors(obj.kind, obj.key):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    UPDATE objects
                    SET generation = CASE
                            WHEN spec = $5::jsonb THEN generation
                            ELSE generation + 1
                        END,
                        spec = $5::jsonb,
                        finalizers = $6::jsonb,
                        labels = $7::jsonb,
                        annotations = $8::jsonb,
                        resource_version = resource_version + 1,
                        updated_at = NOW()
                    WHERE kind = $1 AND namespace = $2 AND name = $3
                      AND resource_version = $4
                    RETURNING resource_version, generation, deletion_timestamp
                    """,
                    obj.kind,
                    obj.namespace,
                    obj.name,
                    version,
                    json.dumps(obj.spec),
                    json.dumps(obj.finalizers),
                    json.dumps(obj.labels),
                    json.dumps(obj.annotations),
                )
                if not row:
                    await self._raise_missing_or_conflict(conn, obj)

                obj.resource_version = str(row["resource_version"])
                obj.generation = row["generation"]
                obj.deletion_timestamp = row["deletion_timestamp"]

                if obj.deletion_timestamp is not None and not obj.finalizers:
                    await self._purge(conn, obj)

    async def update_status(self, obj: Resource) -> None:
        self._ensure_connected()
        version = _version(obj)
        with _translate_errors(obj.kind, obj.key):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    UPDATE objects
                    SET status = $5::jsonb,
                        conditions = $6::jsonb,
                        resource_version = resource_version + 1,
                        updated_at = NOW()
                    WHERE kind = $1 AND namespace = $2 AND name = $3
                      AND resource_version = $4
                    RETURNING resource_version
                    """,
                    obj.kind,
                    obj.namespace,
                    obj.name,
                    version,
                    json.dumps(obj.status),
                    json.dumps([c.to_dict() for c in obj.conditions]),
                )
                if not row:
                    await self._raise_missing_or_conflict(conn, obj)
        obj.resource_version = str(row["resource_version"])

    async def delete(self, obj: Resource) -> None:
        """
        Delete obj right away if it has no finalizers, else mark it.

        Marking sets deletion_timestamp once; repeated deletes keep the
        original timestamp and resource version.
        """
        self._ensure_connected()
        with _translate_errors(obj.kind, obj.key):
            async with self.pool.acquire() as conn:
                deleted = await conn.fetchval(
                    """
                    DELETE FROM objects
                    WHERE kind = $1 AND namespace = $2 AND name = $3
                      AND finalizers = '[]'::jsonb
                    RETURNING id
                    """,
                    obj.kind,
                    obj.namespace,
                    obj.name,
                )
                if deleted:
                    logger.info(f"Deleted {obj.kind} {obj.key}")
                    return

                row = await conn.fetchrow(
                    """
                    UPDATE objects
                    SET deletion_timestamp = COALESCE(deletion_timestamp, NOW()),
                        resource_version = CASE
                            WHEN deletion_timestamp IS NULL
                            THEN resource_version + 1
                            ELSE resource_version
                        END,
                        updated_at = NOW()
                    WHERE kind = $1 AND namespace = $2 AND name = $3
                    RETURNING resource_version, deletion_timestamp
                    """,
                    obj.kind,
                    obj.namespace,
                    obj.name,
                )
        if not row:
            raise NotFoundError(
                f"{obj.kind} {obj.key} not found", kind=obj.kind, key=obj.key
            )
        obj.resource_version = str(row["resource_version"])
        obj.deletion_timestamp = row["deletion_timestamp"]
        logger.info(f"Marked {obj.kind} {obj.key} for deletion")

    async def _purge(self, conn: asyncpg.Connection, obj: Resource) -> None:
        """Drop a deleting object whose last finalizer was just removed."""
        await conn.execute(
            """
            DELETE FROM objects
            WHERE kind = $1 AND namespace = $2 AND name = $3
              AND resource_version = $4
              AND deletion_timestamp IS NOT NULL
              AND finalizers = '[]'::jsonb
            """,
            obj.kind,
            obj.namespace,
            obj.name,
            int(obj.resource_version),
        )
        logger.info(f"Deleted {obj.kind} {obj.key}: all finalizers removed")

    async def _raise_missing_or_conflict(
        self, conn: asyncpg.Connection, obj: Resource
    ) -> None:
        current = await conn.fetchval(
            """
            SELECT resource_version FROM objects
            WHERE kind = $1 AND namespace = $2 AND name = $3
            """,
            obj.kind,
            obj.namespace,
            obj.name,
        )
        if current is None:
            raise NotFoundError(
                f"{obj.kind} {obj.key} not found", kind=obj.kind, key=obj.key
            )
        raise ConflictError(
            f"{obj.kind} {obj.key} has been modified: resource version "
            f"{obj.resource_version} is stale (current {current})",
            kind=obj.kind,
            key=obj.key,
        )

    def _parse_object_row(self, row: asyncpg.Record) -> Resource:
        """
        Build a Resource from an objects row.

        JSON columns arrive as text; anything that does not decode to the
        expected shape raises InvalidError.
        """
        data = dict(row)
        try:
            conditions = _json_column(data, "conditions", list)
            return Resource(
                kind=data["kind"],
                namespace=data["namespace"],
                name=data["name"],
                resource_version=str(data["resource_version"]),
                generation=data.get("generation", 0),
                deletion_timestamp=data.get("deletion_timestamp"),
                finalizers=_json_column(data, "finalizers", list),
                labels=_json_column(data, "labels", dict),
                annotations=_json_column(data, "annotations", dict),
                spec=_json_column(data, "spec", dict),
                status=_json_column(data, "status", dict),
                conditions=[Condition.from_dict(c) for c in conditions],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidError(
                f"Malformed object row {data.get('kind')} "
                f"{data.get('namespace')}/{data.get('name')}: {e}",
                kind=data.get("kind"),
            ) from e


def _json_column(data: Dict[str, Any], column: str, expected: type):
    value = data.get(column)
    if value is None:
        return expected()
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, expected):
        raise TypeError(
            f"column {column} holds {type(value).__name__}, "
            f"expected {expected.__name__}"
        )
    return value
