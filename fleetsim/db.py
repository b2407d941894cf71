from __future__ import annotations

"""
File: fleetsim/db.py
Purpose: MySQL-backed document store for fleet records.
Key responsibilities:
- Create one (seq, id, doc JSON) table per collection.
- Insert, list, fetch, replace and delete JSON documents.
- Run blocking pymysql calls off the event loop.
Config/env vars:
- MYSQL_HOST, MYSQL_PORT, MYSQL_USER, MYSQL_PASSWORD, MYSQL_DB
"""

import asyncio
from contextlib import contextmanager
import json
from typing import Any

import pymysql

from fleetsim.repository import COLLECTIONS, DocumentRepository
from fleetsim.settings import Settings


class MySQLRepository(DocumentRepository):
    """Document repository over MySQL; list order follows insertion order."""
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _connect(self):
        """Open a new MySQL connection with dict cursor."""
        return pymysql.connect(
            host=self.settings.mysql_host,
            port=self.settings.mysql_port,
            user=self.settings.mysql_user,
            password=self.settings.mysql_password,
            database=self.settings.mysql_db,
            autocommit=True,
            cursorclass=pymysql.cursors.DictCursor,
        )

    @contextmanager
    def db_cursor(self):
        """Context manager for a short-lived DB cursor."""
        conn = self._connect()
        try:
            with conn.cursor() as cur:
                yield cur
        finally:
            conn.close()

    @staticmethod
    def _table(collection: str) -> str:
        if collection not in COLLECTIONS:
            raise ValueError(f"unknown collection: {collection}")
        return collection

    def ensure_schema(self) -> None:
        """Create collection tables if they do not exist."""
        with self.db_cursor() as cur:
            for collection in COLLECTIONS:
                cur.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {collection} (
                        seq BIGINT NOT NULL AUTO_INCREMENT,
                        id VARCHAR(64) NOT NULL,
                        doc JSON NOT NULL,
                        PRIMARY KEY (id),
                        UNIQUE KEY uq_{collection}_seq (seq)
                    )
                    """
                )

    def _insert_row(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        table = self._table(collection)
        with self.db_cursor() as cur:
            cur.execute(f"INSERT INTO {table} (id, doc) VALUES (%s, %s)", (doc_id, json.dumps(doc)))

    def _select_all(self, collection: str) -> list[dict[str, Any]]:
        table = self._table(collection)
        with self.db_cursor() as cur:
            cur.execute(f"SELECT doc FROM {table} ORDER BY seq")
            rows = cur.fetchall()
        return [json.loads(row["doc"]) for row in rows]

    def _select_one(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        table = self._table(collection)
        with self.db_cursor() as cur:
            cur.execute(f"SELECT doc FROM {table} WHERE id=%s", (doc_id,))
            row = cur.fetchone()
        return json.loads(row["doc"]) if row else None

    def _update_row(self, collection: str, doc_id: str, doc: dict[str, Any]) -> bool:
        table = self._table(collection)
        with self.db_cursor() as cur:
            affected = cur.execute(f"UPDATE {table} SET doc=%s WHERE id=%s", (json.dumps(doc), doc_id))
            if affected:
                return True
            # MySQL reports 0 affected rows for an unchanged document.
            cur.execute(f"SELECT 1 FROM {table} WHERE id=%s", (doc_id,))
            return cur.fetchone() is not None

    def _delete_row(self, collection: str, doc_id: str) -> bool:
        table = self._table(collection)
        with self.db_cursor() as cur:
            return bool(cur.execute(f"DELETE FROM {table} WHERE id=%s", (doc_id,)))

    async def _doc_insert(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        await asyncio.to_thread(self._insert_row, collection, doc_id, doc)

    async def _doc_all(self, collection: str) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._select_all, collection)

    async def _doc_get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._select_one, collection, doc_id)

    async def _doc_replace(self, collection: str, doc_id: str, doc: dict[str, Any]) -> bool:
        return await asyncio.to_thread(self._update_row, collection, doc_id, doc)

    async def _doc_delete(self, collection: str, doc_id: str) -> bool:
        return await asyncio.to_thread(self._delete_row, collection, doc_id)
