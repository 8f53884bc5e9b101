"""Helpers to load reconciliation inputs from collaborator payloads."""
from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Tuple, Type, TypeVar, Union

from pydantic import ValidationError

from ledgermatch.models import LedgerEntry, RecordError, RecordModel, Transaction

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=RecordModel)


def load_records(
    rows: Iterable[Union[RecordT, Mapping[str, Any]]],
    model: Type[RecordT],
    record_type: str,
) -> Tuple[List[RecordT], List[RecordError]]:
    """
    Validate raw rows into `model` instances.

    Rows that are already instances pass through. Malformed rows are skipped
    and reported; the batch never aborts for a single bad record.
    """
    records: List[RecordT] = []
    errors: List[RecordError] = []
    seen_ids = set()

    for position, row in enumerate(rows):
        record_id = _row_id(row)
        try:
            record = row if isinstance(row, model) else model.model_validate(row)
        except ValidationError as exc:
            errors.append(RecordError(
                record_type=record_type,
                record_id=record_id,
                position=position,
                reason=_describe(exc),
            ))
            continue

        if record.id in seen_ids:
            errors.append(RecordError(
                record_type=record_type,
                record_id=record.id,
                position=position,
                reason="duplicate id in batch",
            ))
            continue

        seen_ids.add(record.id)
        records.append(record)

    if errors:
        logger.warning("Skipped %d malformed %s record(s)", len(errors), record_type)
    return records, errors


def load_transactions(rows) -> Tuple[List[Transaction], List[RecordError]]:
    return load_records(rows, Transaction, "transaction")


def load_entries(rows) -> Tuple[List[LedgerEntry], List[RecordError]]:
    return load_records(rows, LedgerEntry, "ledger_entry")


def _row_id(row: Any) -> str | None:
    if isinstance(row, RecordModel):
        return getattr(row, "id", None)
    if isinstance(row, Mapping):
        value = row.get("id")
        return str(value) if value is not None else None
    return None


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return "; ".join(parts)
