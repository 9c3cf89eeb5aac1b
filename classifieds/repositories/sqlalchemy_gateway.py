"""
SQLAlchemy implementation of the persistence gateway.

Each call runs in its own session and transaction, so a gateway instance can
be shared between request handlers and threads.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, inspect as sa_inspect, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from classifieds.errors import ConflictError, NotFoundError
from classifieds.models.db_models import MODELS
from classifieds.repositories.gateway import (
    CASCADES,
    PersistenceGateway,
    check_child_quota,
    split_filter_key,
    split_order_key,
)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _to_dict(obj) -> Dict[str, Any]:
    return {attr.key: getattr(obj, attr.key) for attr in sa_inspect(obj).mapper.column_attrs}


class SqlAlchemyGateway(PersistenceGateway):
    """PersistenceGateway backed by a relational database"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    def _model(table: str):
        model = MODELS.get(table)
        if model is None:
            raise ValueError(f"Unknown table '{table}'")
        return model

    @staticmethod
    def _clauses(model, filters: Optional[Dict[str, Any]]) -> list:
        clauses = []
        for key, value in (filters or {}).items():
            field, op = split_filter_key(key)
            column = getattr(model, field)
            if op == "eq":
                clauses.append(column.is_(None) if value is None else column == value)
            elif op == "icontains":
                clauses.append(column.ilike(f"%{_escape_like(str(value))}%", escape="\\"))
            elif op == "in":
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column.is_(None) if value else column.is_not(None))
        return clauses

    def _missing_or_conflict(self, db: Session, model, table: str, key: Any, precondition) -> Exception:
        if db.get(model, key) is None:
            return NotFoundError(f"{table} row {key} not found", table=table, key=str(key))
        return ConflictError(f"{table} row {key} does not satisfy {precondition}")

    def insert(self, table: str, row: Dict[str, Any]) -> Any:
        return self.insert_many(table, [row])[0]

    def insert_many(self, table: str, rows: List[Dict[str, Any]]) -> List[Any]:
        model = self._model(table)
        try:
            with self._session_factory.begin() as db:
                objs = [model(**row) for row in rows]
                db.add_all(objs)
                db.flush()
                return [obj.id for obj in objs]
        except IntegrityError as e:
            raise ConflictError(f"Duplicate or invalid {table} row: {e.orig}") from e

    def insert_children(self, parent_table, parent_key, table, fk, rows, max_children=None):
        parent = self._model(parent_table)
        model = self._model(table)
        fk_column = getattr(model, fk)
        try:
            with self._session_factory.begin() as db:
                # No-op write locks the parent row, so count-then-insert runs one caller at a time
                locked = db.execute(
                    update(parent)
                    .where(parent.id == parent_key)
                    .values({parent.id: parent.id})
                    .execution_options(synchronize_session=False)
                )
                if locked.rowcount == 0:
                    raise NotFoundError(
                        f"{parent_table} row {parent_key} not found", table=parent_table, key=str(parent_key)
                    )
                existing = db.scalar(select(func.count()).select_from(model).where(fk_column == parent_key))
                check_child_quota(table, parent_key, int(existing or 0), len(rows), max_children)
                objs = [model(**{**row, fk: parent_key}) for row in rows]
                db.add_all(objs)
                db.flush()
                return [obj.id for obj in objs]
        except IntegrityError as e:
            raise ConflictError(f"Duplicate or invalid {table} row: {e.orig}") from e

    def get(self, table: str, key: Any) -> Dict[str, Any]:
        model = self._model(table)
        with self._session_factory() as db:
            obj = db.get(model, key)
            if obj is None:
                raise NotFoundError(f"{table} row {key} not found", table=table, key=str(key))
            return _to_dict(obj)

    def update(self, table, key, patch, precondition=None):
        model = self._model(table)
        try:
            with self._session_factory.begin() as db:
                stmt = (
                    update(model)
                    .where(model.id == key, *self._clauses(model, precondition))
                    .values(**patch)
                    .execution_options(synchronize_session=False)
                )
                result = db.execute(stmt)
                if result.rowcount == 0:
                    raise self._missing_or_conflict(db, model, table, key, precondition)
                return _to_dict(db.get(model, key))
        except IntegrityError as e:
            raise ConflictError(f"Update of {table} row {key} violates a constraint: {e.orig}") from e

    def delete(self, table, key, precondition=None):
        model = self._model(table)
        with self._session_factory.begin() as db:
            for child_table, fk in CASCADES.get(table, []):
                child = self._model(child_table)
                db.execute(
                    delete(child)
                    .where(getattr(child, fk) == key)
                    .execution_options(synchronize_session=False)
                )
            result = db.execute(
                delete(model)
                .where(model.id == key, *self._clauses(model, precondition))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Raising rolls back the cascaded child deletes as well
                raise self._missing_or_conflict(db, model, table, key, precondition)

    def query(self, table, filters=None, order=None, limit=None, offset=0):
        model = self._model(table)
        stmt = select(model).where(*self._clauses(model, filters))
        for key in order or []:
            field, descending = split_order_key(key)
            column = getattr(model, field)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session_factory() as db:
            return [_to_dict(obj) for obj in db.scalars(stmt).all()]

    def count(self, table, filters=None):
        model = self._model(table)
        stmt = select(func.count()).select_from(model).where(*self._clauses(model, filters))
        with self._session_factory() as db:
            return int(db.scalar(stmt) or 0)

    def increment(self, table, key, field, delta=1):
        model = self._model(table)
        column = getattr(model, field)
        with self._session_factory.begin() as db:
            # Single UPDATE ... SET col = col + delta, no read-modify-write
            result = db.execute(
                update(model)
                .where(model.id == key)
                .values({column: column + delta})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"{table} row {key} not found", table=table, key=str(key))
