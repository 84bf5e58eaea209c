from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Dict, Generator, List, Mapping, Optional, Sequence

from sqlalchemy import Date, DateTime, select
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from .db import SessionLocal
from .models import (
    ActivityModel,
    DailyVisualMapModel,
    DayModel,
    FlightModel,
    HotelModel,
    MustDoCommentModel,
    MustDoModel,
    SavedPlaceModel,
    TravelerModel,
    TripModel,
)

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

TABLES = {
    "trips": TripModel,
    "travelers": TravelerModel,
    "days": DayModel,
    "activities": ActivityModel,
    "flights": FlightModel,
    "hotels": HotelModel,
    "must_dos": MustDoModel,
    "must_do_comments": MustDoCommentModel,
    "saved_places": SavedPlaceModel,
    "daily_visual_maps": DailyVisualMapModel,
}

# parent table -> {embedded name: (relationship attribute, child ordering column)}
EXPANSIONS: Dict[str, Dict[str, tuple[str, Optional[str]]]] = {
    "days": {"activities": ("activities", None)},
    "must_dos": {"comments": ("comments", "created_at")},
}


class StoreError(Exception):
    def __init__(self, message: str, table: Optional[str] = None) -> None:
        super().__init__(message)
        self.table = table


class StoreUnavailableError(StoreError):
    """The database could not be reached or the connection dropped mid-call."""


class ConstraintViolationError(StoreError):
    pass


class RowNotFoundError(StoreError):
    pass


class InvalidRequestError(StoreError):
    pass


class RemoteStore:
    """Row-level CRUD over the trip tables.

    Every call runs in its own session and is attempted exactly once. Rows go in
    and come out as JSON-shaped dicts (ISO strings for dates and timestamps),
    and inserted rows carry the identifier the store assigned.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    @contextmanager
    def session(self, table: Optional[str] = None) -> Generator:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConstraintViolationError(str(exc.orig), table=table) from exc
        except (OperationalError, InterfaceError) as exc:
            db.rollback()
            raise StoreUnavailableError(str(exc.orig), table=table) from exc
        except (DBAPIError, SQLAlchemyError) as exc:
            db.rollback()
            raise StoreError(str(exc), table=table) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Sequence[str] = (),
        expand: Sequence[str] = (),
        limit: Optional[int] = None,
    ) -> List[Row]:
        model = self._model(table)
        relations = self._relations(table, expand)
        with self.session(table) as db:
            stmt = select(model)
            for clause in self._where(model, table, filters):
                stmt = stmt.where(clause)
            for name in order_by:
                column = self._column(model, table, name.lstrip("-"))
                stmt = stmt.order_by(column.desc() if name.startswith("-") else column.asc())
            if limit is not None:
                stmt = stmt.limit(limit)

            rows: List[Row] = []
            for instance in db.execute(stmt).scalars().all():
                row = self._serialize(instance)
                for name, (attribute, child_order) in relations.items():
                    children = list(getattr(instance, attribute))
                    if child_order:
                        children.sort(key=lambda child: getattr(child, child_order))
                    row[name] = [self._serialize(child) for child in children]
                rows.append(row)
            return rows

    def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Row]:
        model = self._model(table)
        if not rows:
            return []
        with self.session(table) as db:
            instances = [model(**self._coerce(model, table, row)) for row in rows]
            db.add_all(instances)
            db.flush()
            return [self._serialize(instance) for instance in instances]

    def update(self, table: str, values: Mapping[str, Any], filters: Mapping[str, Any]) -> List[Row]:
        model = self._model(table)
        if not filters:
            raise InvalidRequestError("update requires at least one filter", table=table)
        coerced = self._coerce(model, table, values)
        coerced.pop("id", None)
        with self.session(table) as db:
            stmt = select(model)
            for clause in self._where(model, table, filters):
                stmt = stmt.where(clause)
            instances = db.execute(stmt).scalars().all()
            if not instances:
                raise RowNotFoundError(f"no {table} row matches {dict(filters)}", table=table)
            for instance in instances:
                for key, value in coerced.items():
                    setattr(instance, key, value)
            db.flush()
            return [self._serialize(instance) for instance in instances]

    def delete(self, table: str, filters: Mapping[str, Any]) -> List[Row]:
        model = self._model(table)
        if not filters:
            raise InvalidRequestError("delete requires at least one filter", table=table)
        with self.session(table) as db:
            stmt = select(model)
            for clause in self._where(model, table, filters):
                stmt = stmt.where(clause)
            instances = db.execute(stmt).scalars().all()
            deleted = [self._serialize(instance) for instance in instances]
            for instance in instances:
                db.delete(instance)
            return deleted

    def upsert(self, table: str, row: Mapping[str, Any], on_conflict: Sequence[str]) -> Row:
        model = self._model(table)
        values = self._coerce(model, table, row)
        missing = [name for name in on_conflict if name not in values]
        if not on_conflict or missing:
            raise InvalidRequestError(f"upsert row lacks conflict columns {missing}", table=table)
        try:
            return self._upsert_once(model, table, dict(values), on_conflict)
        except ConstraintViolationError:
            # a concurrent writer inserted the row between our select and insert
            logger.info("Upsert into %s lost an insert race, retrying as update", table)
            return self._upsert_once(model, table, dict(values), on_conflict)

    def _conflicting(self, db: Session, model, table: str, values: Mapping[str, Any], on_conflict: Sequence[str]):
        stmt = select(model)
        for name in on_conflict:
            stmt = stmt.where(self._column(model, table, name) == values[name])
        return db.execute(stmt).scalars().first()

    def _upsert_once(self, model, table: str, values: Dict[str, Any], on_conflict: Sequence[str]) -> Row:
        with self.session(table) as db:
            instance = self._conflicting(db, model, table, values, on_conflict)
            if instance is None:
                instance = model(**values)
                db.add(instance)
            else:
                values.pop("id", None)
                for key, value in values.items():
                    setattr(instance, key, value)
            db.flush()
            return self._serialize(instance)

    @staticmethod
    def _model(table: str):
        model = TABLES.get(table)
        if model is None:
            raise InvalidRequestError(f"unknown table '{table}'", table=table)
        return model

    @staticmethod
    def _relations(table: str, expand: Sequence[str]) -> Dict[str, tuple[str, Optional[str]]]:
        available = EXPANSIONS.get(table, {})
        unknown = [name for name in expand if name not in available]
        if unknown:
            raise InvalidRequestError(f"'{table}' cannot embed {unknown}", table=table)
        return {name: available[name] for name in expand}

    @staticmethod
    def _column(model, table: str, name: str):
        column = model.__table__.columns.get(name)
        if column is None:
            raise InvalidRequestError(f"unknown column '{table}.{name}'", table=table)
        return getattr(model, name)

    def _where(self, model, table: str, filters: Optional[Mapping[str, Any]]) -> List[Any]:
        clauses = []
        for name, value in (filters or {}).items():
            column = self._column(model, table, name)
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(column.in_([self._coerce_value(model, table, name, item) for item in value]))
            else:
                clauses.append(column == self._coerce_value(model, table, name, value))
        return clauses

    def _coerce(self, model, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        return {name: self._coerce_value(model, table, name, value) for name, value in values.items()}

    @staticmethod
    def _coerce_value(model, table: str, name: str, value: Any) -> Any:
        column = model.__table__.columns.get(name)
        if column is None:
            raise InvalidRequestError(f"unknown column '{table}.{name}'", table=table)
        if not isinstance(value, str):
            return value
        try:
            if isinstance(column.type, DateTime):
                return datetime.fromisoformat(value)
            if isinstance(column.type, Date):
                return date.fromisoformat(value)
        except ValueError as exc:
            raise InvalidRequestError(f"invalid value for '{table}.{name}': {value!r}", table=table) from exc
        return value

    @staticmethod
    def _serialize(instance) -> Row:
        row: Row = {}
        for column in instance.__table__.columns:
            value = getattr(instance, column.name)
            if isinstance(value, (date, datetime)):
                value = value.isoformat()
            elif isinstance(value, list):
                value = list(value)
            row[column.name] = value
        return row
