"""Lightweight SQLite helper for the pattern catalog and decision log."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Any, Iterable, List, Tuple


class DB:
    def __init__(self, sqlite_path: str = "ledgermatch.sqlite3") -> None:
        self.sqlite_path = sqlite_path

    @contextmanager
    def connect(self):
        conn = sqlite3.connect(self.sqlite_path)
        try:
            yield conn
        finally:
            conn.close()

    def execute(self, sql: str, params: Tuple[Any, ...] = ()) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            conn.commit()

    def executemany(self, sql: str, rows: Iterable[Tuple[Any, ...]]) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.executemany(sql, list(rows))
            conn.commit()

    def fetchall(self, sql: str, params: Tuple[Any, ...] = ()) -> List[Tuple]:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            rows = cur.fetchall()
        return rows

    def fetchone(self, sql: str, params: Tuple[Any, ...] = ()) -> Tuple | None:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            row = cur.fetchone()
        return row
