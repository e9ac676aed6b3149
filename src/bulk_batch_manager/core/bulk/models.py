# -*- coding: utf-8 -*-

"""
Data model of a bulk run: records, jobs, batches and per-record outcomes.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from ..errors import InvalidState


RECORD_VALUE_TYPES = (str, int, float, bool, type(None))


#=============================================================================
# Enumerations
#=============================================================================

class OperationKind(str, Enum):
    """Bulk operation declared on a job."""
    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"
    HARD_DELETE = "hardDelete"
    QUERY = "query"
    QUERY_ALL = "queryAll"

    @property
    def is_query(self) -> bool:
        return self in (OperationKind.QUERY, OperationKind.QUERY_ALL)

    @classmethod
    def parse(cls, value):
        """Accept an OperationKind or its name/value in any case."""
        if isinstance(value, cls):
            return value
        lowered = str(value).strip().lower()
        for member in cls:
            if lowered in (member.value.lower(), member.name.lower()):
                return member
        raise ValueError(f"Unknown operation kind: {value!r}")


class BatchState(str, Enum):
    """Lifecycle states of a batch as reported by the remote service."""
    QUEUED = "Queued"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    NOT_PROCESSED = "NotProcessed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown batch state: {value!r}") from None


TERMINAL_STATES = frozenset({
    BatchState.COMPLETED,
    BatchState.FAILED,
    BatchState.NOT_PROCESSED,
})


#=============================================================================
# Records
#=============================================================================

class Record(Mapping):
    """
    A dynamically-keyed, read-only set of field values for one entity.

    Field names are passed through untouched; the remote service is the one
    validating them. Values must be strings, numbers, booleans or None.

    Example:
        Record({"Name": "Acme"}, Industry="Energy")
    """

    __slots__ = ("_fields",)

    def __init__(self, fields=None, **kwargs):
        data = dict(fields or {})
        data.update(kwargs)
        for name, value in data.items():
            if not isinstance(name, str):
                raise TypeError(f"Record field names must be strings, got {name!r}")
            if not isinstance(value, RECORD_VALUE_TYPES):
                raise TypeError(
                    f"Unsupported value for field {name!r}: {type(value).__name__}"
                )
        self._fields = data

    def __getitem__(self, key):
        return self._fields[key]

    def __iter__(self):
        return iter(self._fields)

    def __len__(self):
        return len(self._fields)

    def __eq__(self, other):
        if isinstance(other, Mapping):
            return dict(self._fields) == dict(other)
        return NotImplemented

    def __hash__(self):
        return hash(tuple(self._fields.items()))

    def __repr__(self):
        return f"Record({self._fields!r})"

    def to_payload(self) -> dict:
        """Return a plain dict copy suitable for serialization."""
        return dict(self._fields)


def as_records(items) -> list[Record]:
    """Convert an iterable of mappings into a list of Record objects."""
    return [item if isinstance(item, Record) else Record(item) for item in items]


#=============================================================================
# Jobs and batches
#=============================================================================

@dataclass(frozen=True)
class Job:
    """A declared bulk operation against one entity type."""
    id: str
    entity_type: str
    operation: OperationKind
    state: str = "Open"
    external_id_field: Optional[str] = None
    content_type: str = "JSON"

    @classmethod
    def from_info(cls, info: dict):
        """Build a Job from the job descriptor returned by the service."""
        return cls(
            id=str(info["id"]),
            entity_type=str(info.get("object", "")),
            operation=OperationKind.parse(info.get("operation", "insert")),
            state=str(info.get("state", "Open")),
            external_id_field=info.get("externalIdFieldName"),
            content_type=str(info.get("contentType", "JSON")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "operation": self.operation.value,
            "state": self.state,
            "external_id_field": self.external_id_field,
            "content_type": self.content_type,
        }

    @classmethod
    def from_dict(cls, data: dict):
        return cls(
            id=data["id"],
            entity_type=data["entity_type"],
            operation=OperationKind.parse(data["operation"]),
            state=data.get("state", "Open"),
            external_id_field=data.get("external_id_field"),
            content_type=data.get("content_type", "JSON"),
        )


@dataclass
class Batch:
    """
    One chunk of records submitted under a job.

    The state only moves forward: once a terminal state is reported it is
    never replaced. The result set is attached at most once, after the batch
    reached a terminal state.
    """
    id: str
    job_id: str
    state: BatchState
    record_count: int = 0
    state_message: Optional[str] = None
    records_processed: int = 0
    records_failed: int = 0
    source: Optional[str] = None
    result: Optional["BatchResult"] = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def update_state(self, new_state, state_message=None):
        """
        Record the state reported by the service.

        Raises:
            InvalidState: If the batch is terminal and a different state is reported.
        """
        new_state = BatchState.parse(new_state)
        if self.is_terminal and new_state != self.state:
            raise InvalidState(
                f"Batch {self.id} is already {self.state.value}, "
                f"cannot move to {new_state.value}"
            )
        if new_state != self.state:
            logging.debug(f"Batch {self.id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        if state_message is not None:
            self.state_message = state_message

    def apply_info(self, info: dict):
        """Update state and counters from a batch descriptor."""
        self.update_state(info["state"], info.get("stateMessage"))
        self.records_processed = int(info.get("numberRecordsProcessed") or 0)
        self.records_failed = int(info.get("numberRecordsFailed") or 0)

    def attach_result(self, result: "BatchResult"):
        if not self.is_terminal:
            raise InvalidState(
                f"Batch {self.id} is {self.state.value}; results are only "
                "available once it reached a terminal state"
            )
        if self.result is not None:
            raise InvalidState(f"Batch {self.id} already holds its result set")
        self.result = result

    @classmethod
    def from_info(cls, info: dict, record_count=0, source=None):
        """Build a Batch from the batch descriptor returned by the service."""
        return cls(
            id=str(info["id"]),
            job_id=str(info["jobId"]),
            state=BatchState.parse(info["state"]),
            record_count=record_count,
            state_message=info.get("stateMessage"),
            records_processed=int(info.get("numberRecordsProcessed") or 0),
            records_failed=int(info.get("numberRecordsFailed") or 0),
            source=source,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "state": self.state.value,
            "record_count": self.record_count,
            "state_message": self.state_message,
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict):
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            state=BatchState.parse(data["state"]),
            record_count=int(data.get("record_count") or 0),
            state_message=data.get("state_message"),
            records_processed=int(data.get("records_processed") or 0),
            records_failed=int(data.get("records_failed") or 0),
            source=data.get("source"),
        )


#=============================================================================
# Per-record outcomes
#=============================================================================

@dataclass(frozen=True)
class RecordError:
    """Structured error attached to a record the service did not process."""
    fields: tuple = ()
    message: str = ""
    status_code: str = ""

    @classmethod
    def from_payload(cls, payload):
        """
        Normalize one error payload.

        Accepts a dict ({"fields", "message", "statusCode"} in any key case),
        or the flat "STATUS_CODE:message:field1,field2:--" string used by
        CSV results.
        """
        if isinstance(payload, str):
            return cls._from_flat_string(payload)
        data = _lower_keys(payload)
        fields = data.get("fields") or []
        if isinstance(fields, str):
            fields = [f for f in fields.split(",") if f]
        return cls(
            fields=tuple(str(f) for f in fields),
            message=str(data.get("message") or ""),
            status_code=str(data.get("statuscode") or data.get("status_code") or ""),
        )

    @classmethod
    def _from_flat_string(cls, text):
        parts = text.split(":")
        if len(parts) < 2:
            return cls(message=text.strip(), status_code="UNKNOWN_ERROR")
        status_code = parts[0].strip()
        # Trailing "--" terminates the field list ("...:Name --" or "...:--")
        last = parts[-1].strip()
        if last.endswith("--"):
            last = last[:-2].strip()
            parts = parts[:-1] + ([last] if last else [])
        if len(parts) >= 3:
            message = ":".join(parts[1:-1]).strip()
            fields = [f.strip() for f in parts[-1].split(",") if f.strip()]
        else:
            message = parts[1].strip()
            fields = []
        return cls(fields=tuple(fields), message=message, status_code=status_code)

    @classmethod
    def merge(cls, errors):
        """Fold several errors into one, keeping the first status code."""
        errors = list(errors)
        if len(errors) == 1:
            return errors[0]
        fields = []
        for error in errors:
            fields.extend(f for f in error.fields if f not in fields)
        return cls(
            fields=tuple(fields),
            message="; ".join(e.message for e in errors if e.message),
            status_code=errors[0].status_code,
        )

    def to_dict(self) -> dict:
        return {
            "fields": list(self.fields),
            "message": self.message,
            "status_code": self.status_code,
        }


UNKNOWN_ERROR = RecordError(fields=(), message="Unknown error", status_code="UNKNOWN_ERROR")


@dataclass(frozen=True)
class RecordOutcome:
    """Outcome of one submitted record: generated id on success, error otherwise."""
    id: Optional[str]
    created: bool
    success: bool
    error: Optional[RecordError] = None
    batch_id: Optional[str] = None
    index: int = 0

    @classmethod
    def from_payload(cls, row: dict, batch_id=None, index=0):
        """
        Normalize one raw result row.

        Rows may use any key case, booleans as strings and several error
        shapes; see RecordError.from_payload.
        """
        data = _lower_keys(row)
        success = _as_bool(data.get("success"))
        created = _as_bool(data.get("created"))
        record_id = data.get("id") or None

        raw_errors = data.get("errors", data.get("error"))
        if isinstance(raw_errors, (dict, str)):
            raw_errors = [raw_errors]
        errors = [
            RecordError.from_payload(e) for e in (raw_errors or [])
            if e not in (None, "", {})
        ]

        if success:
            if errors:
                logging.debug(f"Ignoring errors reported on successful record {record_id}")
            return cls(
                id=str(record_id) if record_id is not None else None,
                created=created,
                success=True,
                error=None,
                batch_id=batch_id,
                index=index,
            )
        return cls(
            id=None,
            created=False,
            success=False,
            error=RecordError.merge(errors) if errors else UNKNOWN_ERROR,
            batch_id=batch_id,
            index=index,
        )

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "index": self.index,
            "id": self.id,
            "created": self.created,
            "success": self.success,
            "error_fields": ",".join(self.error.fields) if self.error else None,
            "error_message": self.error.message if self.error else None,
            "error_status_code": self.error.status_code if self.error else None,
        }


@dataclass
class BatchResult:
    """Ordered per-record outcomes of one terminal batch."""
    batch_id: str
    outcomes: list = field(default_factory=list)

    def __iter__(self) -> Iterator[RecordOutcome]:
        return iter(self.outcomes)

    def __len__(self):
        return len(self.outcomes)

    @property
    def failed(self) -> list:
        return [o for o in self.outcomes if not o.success]

    @classmethod
    def from_rows(cls, batch_id, rows):
        return cls(
            batch_id=batch_id,
            outcomes=[
                RecordOutcome.from_payload(row, batch_id=batch_id, index=i)
                for i, row in enumerate(rows)
            ],
        )


#=============================================================================
# Helpers
#=============================================================================

def _lower_keys(payload) -> dict:
    if not isinstance(payload, Mapping):
        return {}
    return {str(k).lower(): v for k, v in payload.items()}


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)
