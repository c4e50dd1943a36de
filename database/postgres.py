"""PostgreSQL-backed document store.

Documents live in a single ``documents`` table as JSONB. ``update_if`` is one
conditional UPDATE, so the compare-and-set happens inside the database. A
trigger publishes every write on the ``document_changes`` channel. A dedicated
LISTEN connection queues the events and one reader task handles them in commit
order, re-reading each document and publishing it to local subscribers. Since
the reads are sequential a subscriber never sees an older document after a
newer one. Updates arriving this way carry no ``previous`` document.
"""
import asyncio
import json
import logging
import ssl
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse, parse_qs

import asyncpg
import backoff

from .exceptions import DatabaseError
from .lib.document_store import DocumentStore, DocumentChange, Document, Where, DELETE
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

CHANGE_CHANNEL = 'document_changes'


def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for hosted PostgreSQL connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context


def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    params = parse_qs(urlparse(db_url).query)
    kwargs: Dict[str, Any] = {}
    if params.get('sslmode', [''])[0] in ('require', 'verify-full', 'verify-ca'):
        kwargs['ssl'] = _get_ssl_context()
    return kwargs


def _strip_query(db_url: str) -> str:
    return db_url.split('?', 1)[0]


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        'jsonb',
        encoder=json.dumps,
        decoder=json.loads,
        schema='pg_catalog'
    )


class PostgresDocumentStore(DocumentStore):
    """Document store on top of an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        super().__init__()
        self.pool = pool
        self._listen_conn: Optional[asyncpg.Connection] = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._reader: Optional[asyncio.Task] = None

    @classmethod
    @backoff.on_exception(
        backoff.expo,
        (OSError, asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError),
        max_tries=5
    )
    async def connect(cls, db_url: str) -> 'PostgresDocumentStore':
        """Create the pool, apply the schema and start listening for changes."""
        conn_kwargs = _get_connection_kwargs(db_url)
        pool = await asyncpg.create_pool(
            _strip_query(db_url),
            min_size=2,
            max_size=20,
            max_inactive_connection_lifetime=300.0,
            command_timeout=60.0,
            init=_init_connection,
            **conn_kwargs
        )
        try:
            await SchemaManager(pool).initialize()
            store = cls(pool)
            await store._start_listener()
        except Exception:
            await pool.close()
            raise
        logger.info("PostgreSQL document store ready")
        return store

    async def _start_listener(self) -> None:
        self._listen_conn = await self.pool.acquire()
        self._reader = asyncio.get_running_loop().create_task(self._read_changes())
        await self._listen_conn.add_listener(CHANGE_CHANNEL, self._on_notify)

    def _on_notify(self, connection, pid, channel, payload) -> None:
        # asyncpg calls this in the order the notifications were committed
        try:
            event = json.loads(payload)
        except ValueError:
            logger.warning(f"Ignoring malformed change payload: {payload!r}")
            return
        self._events.put_nowait(event)

    async def _read_changes(self) -> None:
        """Turn change events into subscriber changes, one at a time in commit order."""
        while True:
            event = await self._events.get()
            if not self.subscriber_count(event.get('collection')):
                continue
            try:
                await self._handle_change(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Failed to read change {event}: {e}")

    async def _handle_change(self, event: Dict[str, Any]) -> None:
        collection, doc_id, op = event['collection'], event['id'], event['op']
        doc = None if op == DELETE else await self.get(collection, doc_id)
        if doc is None and op != DELETE:
            # Deleted again before we could read it
            return
        self._publish(DocumentChange(op=op, collection=collection, doc_id=doc_id, doc=doc))

    async def put(self, collection: str, doc_id: Optional[str], doc: Document) -> Document:
        doc_id = doc_id or str(uuid.uuid4())
        body = dict(doc, id=doc_id)
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(
                    '''
                    INSERT INTO documents (collection, id, body)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (collection, id) DO UPDATE
                    SET body = EXCLUDED.body, updated_at = now()
                    RETURNING body
                    ''',
                    collection, doc_id, body
                )
        except asyncpg.PostgresError as e:
            logger.error(f"Database error writing {collection}/{doc_id}: {e}")
            raise DatabaseError(f"Failed to write {collection}/{doc_id}: {e}")

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                'SELECT body FROM documents WHERE collection = $1 AND id = $2',
                collection, doc_id
            )

    async def query(self, collection: str, where: Where = None) -> List[Document]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT body FROM documents
                WHERE collection = $1 AND body @> $2::jsonb
                ORDER BY created_at, id
                ''',
                collection, where or {}
            )
        return [row['body'] for row in rows]

    async def update(self, collection: str, doc_id: str, changes: Document) -> Optional[Document]:
        return await self.update_if(collection, doc_id, changes, {})

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        changes: Document,
        expected: Document
    ) -> Optional[Document]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(
                    '''
                    UPDATE documents
                    SET body = body || $3::jsonb, updated_at = now()
                    WHERE collection = $1 AND id = $2 AND body @> $4::jsonb
                    RETURNING body
                    ''',
                    collection, doc_id, changes, expected
                )
        except asyncpg.PostgresError as e:
            logger.error(f"Database error updating {collection}/{doc_id}: {e}")
            raise DatabaseError(f"Failed to update {collection}/{doc_id}: {e}")

    async def delete(self, collection: str, doc_id: str) -> Optional[Document]:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                'DELETE FROM documents WHERE collection = $1 AND id = $2 RETURNING body',
                collection, doc_id
            )

    async def close(self) -> None:
        await super().close()
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.wait([self._reader])
            self._reader = None
        if self._listen_conn is not None:
            await self._listen_conn.remove_listener(CHANGE_CHANNEL, self._on_notify)
            await self.pool.release(self._listen_conn)
            self._listen_conn = None
        await self.pool.close()
