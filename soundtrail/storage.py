"""
History Store - SQLite-backed collection store for listens, genre cache,
settings and classification progress.

Each collection is a table of (key, JSON payload) rows. Writes outside an
explicit transaction commit immediately; transaction() groups several
operations and rolls all of them back if the block raises.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from .errors import StorageError
from .timestamps import ensure_seconds, format_timestamp

logger = logging.getLogger(__name__)

LISTENS = 'listens'
GENRES = 'genres'
SETTINGS = 'settings'
PROGRESS = 'progress'
API_CONFIG = 'api_config'

KEY_FIELDS = {
    LISTENS: 'id',
    GENRES: 'artist',
    SETTINGS: 'key',
    PROGRESS: 'id',
    API_CONFIG: 'key',
}

BACKUP_VERSION = '2.0'


class HistoryStore:
    """Interface for the local history database"""

    def __init__(self, db_path: str = "data/history.db"):
        """
        Open (and create if needed) the history database

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        # autocommit mode; transactions are managed explicitly below
        self.conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._depth = 0
        self._init_database()
        logger.debug(f"History store opened: {db_path}")

    def _init_database(self):
        """Create one table per collection if missing"""
        for collection in KEY_FIELDS:
            self.conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {collection} (
                    key TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    @staticmethod
    def _table(collection: str) -> str:
        if collection not in KEY_FIELDS:
            raise StorageError(f"Unknown collection: {collection}")
        return collection

    def _key_of(self, collection: str, record: Dict[str, Any]) -> str:
        field = KEY_FIELDS[self._table(collection)]
        key = record.get(field)
        if key is None or key == '':
            raise StorageError(f"Record for '{collection}' is missing key field '{field}'")
        return str(key)

    @staticmethod
    def _dump(record: Dict[str, Any]) -> str:
        return json.dumps(record, ensure_ascii=False, default=str)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["HistoryStore"]:
        """
        Group operations; commit on success, roll back if the block raises.

        Nested calls use savepoints so an inner failure that the caller
        handles does not discard the outer work.
        """
        if self._depth == 0:
            self.conn.execute("BEGIN")
        else:
            self.conn.execute(f"SAVEPOINT sp_{self._depth}")
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self.conn.execute("ROLLBACK")
                logger.debug("Transaction rolled back")
            else:
                self.conn.execute(f"ROLLBACK TO SAVEPOINT sp_{self._depth}")
                self.conn.execute(f"RELEASE SAVEPOINT sp_{self._depth}")
            raise
        else:
            self._depth -= 1
            if self._depth == 0:
                self.conn.execute("COMMIT")
            else:
                self.conn.execute(f"RELEASE SAVEPOINT sp_{self._depth}")

    # ------------------------------------------------------------------
    # Collection operations
    # ------------------------------------------------------------------

    def get_all(self, collection: str) -> List[Dict[str, Any]]:
        table = self._table(collection)
        rows = self.conn.execute(f"SELECT payload FROM {table} ORDER BY rowid").fetchall()
        return [json.loads(row['payload']) for row in rows]

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        table = self._table(collection)
        row = self.conn.execute(f"SELECT payload FROM {table} WHERE key = ?", (str(key),)).fetchone()
        return json.loads(row['payload']) if row else None

    def put(self, collection: str, record: Dict[str, Any]) -> None:
        """Insert or overwrite a record"""
        table = self._table(collection)
        key = self._key_of(collection, record)
        self.conn.execute(
            f"INSERT OR REPLACE INTO {table} (key, payload, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)",
            (key, self._dump(record)),
        )

    def add(self, collection: str, record: Dict[str, Any]) -> None:
        """Insert a record; fails if the key already exists"""
        table = self._table(collection)
        key = self._key_of(collection, record)
        try:
            self.conn.execute(
                f"INSERT INTO {table} (key, payload) VALUES (?, ?)",
                (key, self._dump(record)),
            )
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Duplicate key '{key}' in '{collection}'") from e

    def bulk_add(self, collection: str, records: Iterable[Dict[str, Any]]) -> int:
        table = self._table(collection)
        rows = [(self._key_of(collection, r), self._dump(r)) for r in records]
        try:
            self.conn.executemany(f"INSERT INTO {table} (key, payload) VALUES (?, ?)", rows)
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Duplicate key during bulk insert into '{collection}': {e}") from e
        return len(rows)

    def delete(self, collection: str, key: str) -> None:
        table = self._table(collection)
        self.conn.execute(f"DELETE FROM {table} WHERE key = ?", (str(key),))

    def clear(self, collection: str) -> None:
        table = self._table(collection)
        self.conn.execute(f"DELETE FROM {table}")

    def count(self, collection: str) -> int:
        table = self._table(collection)
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def replace_all(self, collection: str, records: List[Dict[str, Any]]) -> int:
        """Clear a collection and bulk-insert `records` in one transaction"""
        with self.transaction():
            self.clear(collection)
            written = self.bulk_add(collection, records)
        logger.debug(f"Replaced '{collection}' with {written} records")
        return written

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self) -> "HistoryStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ----------------------------------------------------------------------
# Backup / restore
# ----------------------------------------------------------------------

def _normalize_listen_record(record: Dict[str, Any]) -> Dict[str, Any]:
    normalized = dict(record)
    ts = ensure_seconds(record.get('timestamp') or record.get('listened_at'))
    normalized['timestamp'] = ts
    normalized.pop('listened_at', None)
    return normalized


def export_backup(store: HistoryStore) -> Dict[str, Any]:
    """
    Build the versioned backup document.

    Listen timestamps are normalized to seconds regardless of how older
    records were stored. Provider credentials (api_config) are never exported.
    """
    listens = [_normalize_listen_record(r) for r in store.get_all(LISTENS)]
    timestamps = [r['timestamp'] for r in listens if r.get('timestamp')]
    date_range = None
    if timestamps:
        date_range = {'earliest': min(timestamps), 'latest': max(timestamps)}

    document = {
        'version': BACKUP_VERSION,
        'exportDate': datetime.now(timezone.utc).isoformat(),
        'listens': listens,
        'genres': store.get_all(GENRES),
        'settings': store.get_all(SETTINGS),
        'progress': store.get_all(PROGRESS),
        'metadata': {
            'totalListens': len(listens),
            'dateRange': date_range,
        },
    }
    logger.info(
        f"Exported backup: {len(listens):,} listens, {len(document['genres']):,} cached artists"
        + (f", {format_timestamp(date_range['earliest'])[:10]} to {format_timestamp(date_range['latest'])[:10]}"
           if date_range else "")
    )
    return document


def import_backup(store: HistoryStore, document: Dict[str, Any]) -> Dict[str, int]:
    """
    Restore a backup document produced by export_backup().

    Listens are replaced wholesale (timestamps normalized to seconds); genre
    cache entries, settings and progress records are upserted.
    """
    if not isinstance(document, dict) or not isinstance(document.get('listens'), list):
        raise StorageError("Invalid backup document: missing listens array")
    version = str(document.get('version', ''))
    if version.split('.')[0] not in ('1', '2'):
        raise StorageError(f"Unsupported backup version: {version or 'missing'}")

    listens = []
    skipped = 0
    for record in document['listens']:
        normalized = _normalize_listen_record(record)
        if not normalized.get('id') or not normalized.get('timestamp'):
            skipped += 1
            continue
        listens.append(normalized)

    with store.transaction():
        store.clear(LISTENS)
        store.bulk_add(LISTENS, listens)
        for entry in document.get('genres') or []:
            store.put(GENRES, entry)
        for entry in document.get('settings') or []:
            store.put(SETTINGS, entry)
        for entry in document.get('progress') or []:
            store.put(PROGRESS, entry)

    restored = {
        'listens': len(listens),
        'skipped': skipped,
        'genres': len(document.get('genres') or []),
        'settings': len(document.get('settings') or []),
        'progress': len(document.get('progress') or []),
    }
    logger.info(f"Restored backup: {restored}")
    return restored
