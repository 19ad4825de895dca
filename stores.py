"""
Entity stores.

Controllers only depend on the ``EntityStore`` interface. ``SqlStore``
subclasses persist through Flask-SQLAlchemy; ``MemoryStore`` keeps documents
in a dict and is what the test suite runs against.
"""
from __future__ import annotations

import copy
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import fields, replace
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import false
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload, selectinload

import data_models as models
import entities
from data_models import db
from entities import ref_id

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """
    Unexpected failure of the backing store.
    """


class EntityNotFound(LookupError):
    """
    Raised by writes that target an id with no document behind it.
    """


class DuplicateEntity(Exception):
    """
    Raised when a write would break a unique field. ``existing`` is the
    document already holding the value, when it could be loaded.
    """

    def __init__(self, field: str, value: Any, existing=None):
        super().__init__(f"{field}={value!r} already exists")
        self.field = field
        self.value = value
        self.existing = existing


def project(entity, projection: Optional[Sequence[str]]):
    """
    Keep only the projected fields (and the id); other fields fall back to their defaults.
    """
    if not projection:
        return entity
    keep = set(projection) | {"id"}
    values = {f.name: getattr(entity, f.name) for f in fields(entity) if f.name in keep}
    return type(entity)(**values)


# SQLite INTEGER primary keys are signed 64-bit
MAX_ID = 2 ** 63 - 1


def _parse_id(value) -> Optional[int]:
    try:
        pk = int(value)
    except (TypeError, ValueError):
        return None
    return pk if -MAX_ID - 1 <= pk <= MAX_ID else None


def _sort_key(value):
    return (value is None, value)


class EntityStore(ABC):
    """
    Persistence capabilities for one entity type.

    Criteria are ``{field: value}`` equality maps. For list-valued references
    (``Book.genre``) a criterion matches when the id is in the list.
    """
    entity_type: type = None

    @abstractmethod
    def find_by_id(self, entity_id: str, populate: Sequence[str] = ()):
        """Return the entity with this id, or None."""

    @abstractmethod
    def find(
        self,
        criteria: Optional[Mapping[str, Any]] = None,
        projection: Optional[Sequence[str]] = None,
        sort: Optional[str] = None,
        populate: Sequence[str] = (),
    ) -> List[Any]:
        """Return every entity matching ``criteria``, ascending by ``sort`` when given."""

    def find_one(self, criteria: Mapping[str, Any], populate: Sequence[str] = ()):
        matches = self.find(criteria, populate=populate)
        return matches[0] if matches else None

    @abstractmethod
    def count(self, criteria: Optional[Mapping[str, Any]] = None) -> int:
        ...

    @abstractmethod
    def insert(self, entity):
        """Persist a new entity and return it with its allocated id."""

    @abstractmethod
    def update_by_id(self, entity_id: str, entity):
        """Overwrite the document ``entity_id``. Raises EntityNotFound."""

    @abstractmethod
    def delete_by_id(self, entity_id: str) -> None:
        """Remove the document ``entity_id``. Raises EntityNotFound."""

    @abstractmethod
    def enum_values(self, field: str) -> List[str]:
        """Allowed values of an enumerated field, as declared by the schema."""


# -----------------------------
# In-memory store
# -----------------------------
class MemoryStore(EntityStore):
    """
    Dict-backed store. Documents keep references as ids; every read hands
    out a copy so callers never share state with the store.
    """

    def __init__(
        self,
        entity_type: type,
        references: Optional[Mapping[str, str]] = None,
        unique: Sequence[str] = (),
        enums: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        self.entity_type = entity_type
        # field -> name of the store holding the referenced entities
        self.references = dict(references or {})
        self.unique = tuple(unique)
        self.enums = {name: list(values) for name, values in (enums or {}).items()}
        self.catalog: Optional[Catalog] = None
        self._documents: Dict[str, Any] = {}

    def find_by_id(self, entity_id, populate=()):
        document = self._documents.get(entity_id)
        if document is None:
            return None
        return self._populate(document, populate)

    def find(self, criteria=None, projection=None, sort=None, populate=()):
        matches = [d for d in self._documents.values() if self._matches(d, criteria or {})]
        if sort:
            matches.sort(key=lambda d: _sort_key(getattr(d, sort)))
        return [project(self._populate(d, populate), projection) for d in matches]

    def count(self, criteria=None) -> int:
        return sum(1 for d in self._documents.values() if self._matches(d, criteria or {}))

    def insert(self, entity):
        document = self._dehydrate(entity, uuid.uuid4().hex)
        self._check_unique(document)
        self._documents[document.id] = document
        logger.debug("Inserted %s %s", self.entity_type.__name__, document.id)
        return copy.deepcopy(document)

    def update_by_id(self, entity_id, entity):
        if entity_id not in self._documents:
            raise EntityNotFound(f"{self.entity_type.__name__} {entity_id} not found")
        document = self._dehydrate(entity, entity_id)
        self._check_unique(document)
        self._documents[entity_id] = document
        return copy.deepcopy(document)

    def delete_by_id(self, entity_id) -> None:
        if self._documents.pop(entity_id, None) is None:
            raise EntityNotFound(f"{self.entity_type.__name__} {entity_id} not found")

    def enum_values(self, field: str) -> List[str]:
        return list(self.enums[field])

    def _matches(self, document, criteria: Mapping[str, Any]) -> bool:
        for name, expected in criteria.items():
            actual = getattr(document, name)
            if isinstance(actual, list):
                if expected not in actual:
                    return False
            elif actual != expected:
                return False
        return True

    def _dehydrate(self, entity, entity_id: str):
        document = copy.deepcopy(entity)
        document.id = entity_id
        for name in self.references:
            value = getattr(document, name)
            if isinstance(value, list):
                setattr(document, name, [ref_id(v) for v in value])
            else:
                setattr(document, name, ref_id(value))
        return document

    def _check_unique(self, document) -> None:
        for name in self.unique:
            value = getattr(document, name)
            for other in self._documents.values():
                if other.id != document.id and getattr(other, name) == value:
                    raise DuplicateEntity(name, value, existing=copy.deepcopy(other))

    def _populate(self, document, populate: Sequence[str]):
        entity = copy.deepcopy(document)
        for name in populate:
            target = self.catalog.store_for(self.references[name])
            value = getattr(entity, name)
            if isinstance(value, list):
                resolved = (target.find_by_id(v) for v in value)
                setattr(entity, name, [r for r in resolved if r is not None])
            elif value is not None:
                setattr(entity, name, target.find_by_id(value))
        return entity


# -----------------------------
# Flask-SQLAlchemy stores
# -----------------------------
class SqlStore(EntityStore):
    """
    Store backed by a Flask-SQLAlchemy model. Needs an application context.
    """
    model = None
    # scalar fields, named the same on the model and the entity
    columns: Tuple[str, ...] = ()
    # entity field -> (relationship, foreign key column)
    references: Dict[str, Tuple[str, str]] = {}
    # entity field -> (relationship, related model)
    collections: Dict[str, Tuple[str, Any]] = {}
    unique: Tuple[str, ...] = ()

    _by_model: Dict[type, type] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if cls.model is not None:
            SqlStore._by_model[cls.model] = cls

    @classmethod
    def from_row(cls, row, populate: Sequence[str] = ()):
        values = {name: getattr(row, name) for name in cls.columns}
        for name, (relationship, column) in cls.references.items():
            if name in populate:
                related = getattr(row, relationship)
                values[name] = _row_to_entity(related) if related is not None else None
            else:
                pk = getattr(row, column)
                values[name] = str(pk) if pk is not None else None
        for name, (relationship, _) in cls.collections.items():
            related = getattr(row, relationship)
            if name in populate:
                values[name] = [_row_to_entity(r) for r in related]
            else:
                values[name] = [str(r.id) for r in related]
        return cls.entity_type(id=str(row.id), **values)

    def find_by_id(self, entity_id, populate=()):
        with self._reading():
            row = self._get(entity_id, populate)
            if row is None:
                return None
            return self.from_row(row, populate)

    def find(self, criteria=None, projection=None, sort=None, populate=()):
        with self._reading():
            query = self._query(criteria, populate)
            query = query.order_by(getattr(self.model, sort).asc() if sort else self.model.id)
            return [project(self.from_row(row, populate), projection) for row in query.all()]

    def find_one(self, criteria, populate=()):
        with self._reading():
            row = self._query(criteria, populate).order_by(self.model.id).first()
            if row is None:
                return None
            return self.from_row(row, populate)

    def count(self, criteria=None) -> int:
        with self._reading():
            return self._query(criteria).count()

    def insert(self, entity):
        row = self.model()
        with self._writing("create", entity):
            self._assign(row, entity)
            db.session.add(row)
        return replace(entity, id=str(row.id))

    def update_by_id(self, entity_id, entity):
        with self._reading():
            row = self._get(entity_id)
        if row is None:
            raise EntityNotFound(f"{self.entity_type.__name__} {entity_id} not found")
        with self._writing("update", entity):
            self._assign(row, entity)
        return replace(entity, id=str(row.id))

    def delete_by_id(self, entity_id) -> None:
        with self._reading():
            row = self._get(entity_id)
        if row is None:
            raise EntityNotFound(f"{self.entity_type.__name__} {entity_id} not found")
        with self._writing("delete"):
            db.session.delete(row)

    def enum_values(self, field: str) -> List[str]:
        return list(getattr(self.model, field).type.enums)

    def _get(self, entity_id, populate: Sequence[str] = ()):
        pk = _parse_id(entity_id)
        if pk is None:
            return None
        return db.session.get(self.model, pk, options=self._load_options(populate))

    def _query(self, criteria: Optional[Mapping[str, Any]], populate: Sequence[str] = ()):
        query = self.model.query.options(*self._load_options(populate))
        for name, value in (criteria or {}).items():
            query = query.filter(self._criterion(name, value))
        return query

    def _criterion(self, name: str, value):
        if name in self.references:
            pk = _parse_id(value)
            column = self.references[name][1]
            return false() if pk is None else getattr(self.model, column) == pk
        if name in self.collections:
            pk = _parse_id(value)
            relationship, related = self.collections[name]
            return false() if pk is None else getattr(self.model, relationship).any(related.id == pk)
        return getattr(self.model, name) == value

    def _load_options(self, populate: Sequence[str]) -> list:
        options = []
        for name in populate:
            if name in self.references:
                options.append(joinedload(getattr(self.model, self.references[name][0])))
            elif name in self.collections:
                options.append(selectinload(getattr(self.model, self.collections[name][0])))
        return options

    def _assign(self, row, entity) -> None:
        for name in self.columns:
            setattr(row, name, getattr(entity, name))
        for name, (_, column) in self.references.items():
            setattr(row, column, _parse_id(ref_id(getattr(entity, name))))
        for name, (relationship, related) in self.collections.items():
            ids = [pk for pk in (_parse_id(ref_id(v)) for v in getattr(entity, name)) if pk is not None]
            setattr(row, relationship, related.query.filter(related.id.in_(ids)).all() if ids else [])

    @contextmanager
    def _reading(self) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Failed to read %s", self.entity_type.__name__)
            raise StoreError(f"Database error while trying to read {self.entity_type.__name__}.") from exc

    @contextmanager
    def _writing(self, action: str, entity=None) -> Iterator[None]:
        name = self.entity_type.__name__
        try:
            yield
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            duplicate = self._find_duplicate(entity) if entity is not None else None
            if duplicate is not None:
                raise duplicate from exc
            logger.exception("Integrity error while trying to %s %s", action, name)
            raise StoreError(f"Database error while trying to {action} {name}.") from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Failed to %s %s", action, name)
            raise StoreError(f"Database error while trying to {action} {name}.") from exc

    def _find_duplicate(self, entity) -> Optional[DuplicateEntity]:
        for name in self.unique:
            value = getattr(entity, name)
            existing = self.find_one({name: value})
            if existing is not None and existing.id != entity.id:
                return DuplicateEntity(name, value, existing=existing)
        return None


def _row_to_entity(row):
    return SqlStore._by_model[type(row)].from_row(row)


class AuthorSqlStore(SqlStore):
    model = models.Author
    entity_type = entities.Author
    columns = ("first_name", "family_name", "date_of_birth", "date_of_death")


class GenreSqlStore(SqlStore):
    model = models.Genre
    entity_type = entities.Genre
    columns = ("name",)
    unique = ("name",)


class BookSqlStore(SqlStore):
    model = models.Book
    entity_type = entities.Book
    columns = ("title", "summary", "isbn")
    references = {"author": ("author", "author_id")}
    collections = {"genre": ("genres", models.Genre)}


class BookInstanceSqlStore(SqlStore):
    model = models.BookInstance
    entity_type = entities.BookInstance
    columns = ("imprint", "status", "due_back")
    references = {"book": ("book", "book_id")}


# -----------------------------
# Catalog
# -----------------------------
class Catalog:
    """
    The four entity stores, addressable by collection name.
    """

    def __init__(self, authors: EntityStore, books: EntityStore, genres: EntityStore, book_instances: EntityStore):
        self.authors = authors
        self.books = books
        self.genres = genres
        self.book_instances = book_instances

    def store_for(self, name: str) -> EntityStore:
        return getattr(self, name)

    def stores(self) -> List[EntityStore]:
        return [self.authors, self.books, self.genres, self.book_instances]


def create_catalog(backend: str = "sql") -> Catalog:
    """
    Build the stores for ``backend`` ("sql" or "memory").
    """
    if backend == "sql":
        return Catalog(
            authors=AuthorSqlStore(),
            books=BookSqlStore(),
            genres=GenreSqlStore(),
            book_instances=BookInstanceSqlStore(),
        )
    if backend == "memory":
        catalog = Catalog(
            authors=MemoryStore(entities.Author),
            books=MemoryStore(entities.Book, references={"author": "authors", "genre": "genres"}),
            genres=MemoryStore(entities.Genre, unique=("name",)),
            book_instances=MemoryStore(
                entities.BookInstance,
                references={"book": "books"},
                enums={"status": models.BOOK_INSTANCE_STATUSES},
            ),
        )
        for store in catalog.stores():
            store.catalog = catalog
        return catalog
    raise ValueError(f"Unknown catalog store backend: {backend!r}")
