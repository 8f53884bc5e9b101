"""Append-only SQLite log of human review decisions."""
from __future__ import annotations

import os
from typing import List

from ledgermatch.models import HumanDecision
from ledgermatch.services.db import DB

DB_PATH = os.getenv("LEDGERMATCH_STATE_DB", os.path.join(os.getcwd(), "ledgermatch.sqlite3"))


class DecisionStore:
    def __init__(self, db_path: str = DB_PATH) -> None:
        self.db = DB(sqlite_path=db_path)
        self._ensure_table()

    def _ensure_table(self) -> None:
        self.db.execute(
            """
            CREATE TABLE IF NOT EXISTS lm_decisions (
                decision_id TEXT PRIMARY KEY,
                kind TEXT,
                actor TEXT,
                decided_at TEXT,
                payload TEXT
            )
            """
        )

    def append(self, decision: HumanDecision) -> None:
        self.db.execute(
            """
            INSERT INTO lm_decisions (decision_id, kind, actor, decided_at, payload)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                decision.id,
                decision.kind.value,
                decision.actor,
                decision.decided_at.isoformat(),
                decision.model_dump_json(),
            ),
        )

    def list(self) -> List[HumanDecision]:
        rows = self.db.fetchall("SELECT payload FROM lm_decisions ORDER BY rowid")
        return [HumanDecision.model_validate_json(row[0]) for row in rows]

    def count(self) -> int:
        row = self.db.fetchone("SELECT COUNT(*) FROM lm_decisions")
        return int(row[0]) if row else 0

    def clear(self) -> None:
        self.db.execute("DELETE FROM lm_decisions")
