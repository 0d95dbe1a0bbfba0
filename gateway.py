"""Owner-keyed document store consumed by the ledger core.

The core only talks to :class:`PersistenceGateway`. The SQLAlchemy
implementation keeps every record as a JSON document in a single
``documents`` table so the core never depends on a relational schema.
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import session_scope
from errors import NotFound, PersistenceFailure, ValidationError
from models import Document

logger = logging.getLogger(__name__)

Record = dict[str, Any]


@dataclass(frozen=True)
class Operation:
    kind: Literal["put", "update", "delete"]
    collection: str
    id: str
    record: Record = field(default_factory=dict)

    @classmethod
    def put(cls, collection: str, record_id: str, record: Record) -> "Operation":
        return cls("put", collection, record_id, record)

    @classmethod
    def update(cls, collection: str, record_id: str, partial: Record) -> "Operation":
        return cls("update", collection, record_id, partial)

    @classmethod
    def delete(cls, collection: str, record_id: str) -> "Operation":
        return cls("delete", collection, record_id)


class PersistenceGateway(ABC):
    @abstractmethod
    def query_by_owner(self, collection: str, owner_id: str) -> list[Record]: ...

    @abstractmethod
    def get_by_id(self, collection: str, record_id: str) -> Optional[Record]: ...

    @abstractmethod
    def put(self, collection: str, record_id: str, record: Record) -> None: ...

    @abstractmethod
    def update(self, collection: str, record_id: str, partial: Record) -> None: ...

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> None: ...

    @abstractmethod
    def commit_atomic(self, operations: Sequence[Operation]) -> None: ...

    @abstractmethod
    def owner_ids(self, collection: str) -> list[str]: ...


def _with_owner(record: Record, record_id: str) -> Record:
    # Older clients wrote the owner as "userId".
    data = {**record, "id": record_id}
    if not data.get("owner_id") and data.get("userId"):
        data["owner_id"] = data.pop("userId")
    if not data.get("owner_id"):
        raise ValidationError("Record is missing owner_id")
    data["owner_id"] = str(data["owner_id"])
    return data


class SQLAlchemyGateway(PersistenceGateway):
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self.session_factory = session_factory

    def _run(self, action: str, fn: Callable[[Session], Any]) -> Any:
        try:
            with session_scope(self.session_factory) as session:
                return fn(session)
        except SQLAlchemyError as exc:
            logger.error(f"gateway_failure: action={action} error={exc}")
            raise PersistenceFailure(f"Storage failure during {action}") from exc

    def query_by_owner(self, collection: str, owner_id: str) -> list[Record]:
        def _query(session: Session) -> list[Record]:
            stmt = (
                select(Document)
                .where(Document.collection == collection, Document.owner_id == owner_id)
                .order_by(Document.created_at, Document.id)
            )
            return [copy.deepcopy(doc.data) for doc in session.scalars(stmt)]

        return self._run("query", _query)

    def get_by_id(self, collection: str, record_id: str) -> Optional[Record]:
        def _get(session: Session) -> Optional[Record]:
            doc = session.get(Document, (collection, record_id))
            return copy.deepcopy(doc.data) if doc else None

        return self._run("get", _get)

    def put(self, collection: str, record_id: str, record: Record) -> None:
        self.commit_atomic([Operation.put(collection, record_id, record)])

    def update(self, collection: str, record_id: str, partial: Record) -> None:
        self.commit_atomic([Operation.update(collection, record_id, partial)])

    def delete(self, collection: str, record_id: str) -> None:
        self.commit_atomic([Operation.delete(collection, record_id)])

    def commit_atomic(self, operations: Sequence[Operation]) -> None:
        operations = [
            Operation.put(op.collection, op.id, _with_owner(op.record, op.id))
            if op.kind == "put"
            else op
            for op in operations
        ]

        def _commit(session: Session) -> None:
            for op in operations:
                self._apply(session, op)
                session.flush()

        self._run("commit", _commit)

    def owner_ids(self, collection: str) -> list[str]:
        def _owners(session: Session) -> list[str]:
            stmt = (
                select(Document.owner_id)
                .where(Document.collection == collection)
                .distinct()
                .order_by(Document.owner_id)
            )
            return list(session.scalars(stmt))

        return self._run("owners", _owners)

    @staticmethod
    def _apply(session: Session, op: Operation) -> None:
        doc = session.get(Document, (op.collection, op.id))
        if op.kind == "put":
            data = op.record
            if doc is None:
                session.add(
                    Document(
                        collection=op.collection,
                        id=op.id,
                        owner_id=data["owner_id"],
                        data=data,
                    )
                )
            else:
                doc.owner_id = data["owner_id"]
                doc.data = data
            return
        if doc is None:
            raise NotFound(op.collection, op.id)
        if op.kind == "update":
            if "owner_id" in op.record and op.record["owner_id"] != doc.owner_id:
                raise ValidationError("owner_id cannot be changed")
            doc.data = {**doc.data, **op.record}
            return
        session.delete(doc)
