"""
Catalog entities handed between the stores, the forms and the templates.

References to other entities are stored as ids (``str``) and only replaced
by the referenced entity when a store is asked to populate them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import ClassVar, List, Optional, Union


def ref_id(value) -> Optional[str]:
    """
    Return the id of a reference, whether it holds a bare id or a populated entity.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.id


class Entity:
    collection: ClassVar[str] = ""

    id: Optional[str]

    @property
    def url(self) -> str:
        return f"/catalog/{self.collection}/{self.id}"


@dataclass
class Author(Entity):
    """
    Author entity.
    """
    collection: ClassVar[str] = "authors"

    first_name: str = ""
    family_name: str = ""
    date_of_birth: Optional[date] = None
    date_of_death: Optional[date] = None
    id: Optional[str] = None

    @property
    def name(self) -> str:
        if self.first_name and self.family_name:
            return f"{self.family_name}, {self.first_name}"
        return ""

    @property
    def lifespan(self) -> str:
        born = self.date_of_birth.isoformat() if self.date_of_birth else ""
        died = self.date_of_death.isoformat() if self.date_of_death else ""
        if not born and not died:
            return ""
        return f"{born} - {died}"


@dataclass
class Genre(Entity):
    """
    Genre entity. Names are unique across the catalog.
    """
    collection: ClassVar[str] = "genres"

    name: str = ""
    id: Optional[str] = None


@dataclass
class Book(Entity):
    """
    Book entity.
    """
    collection: ClassVar[str] = "books"

    title: str = ""
    author: Union[str, Author, None] = None
    summary: str = ""
    isbn: str = ""
    genre: List[Union[str, Genre]] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def genre_ids(self) -> List[str]:
        return [ref_id(g) for g in self.genre]


@dataclass
class BookInstance(Entity):
    """
    A physical copy of a book.
    """
    collection: ClassVar[str] = "bookinstances"

    book: Union[str, Book, None] = None
    imprint: str = ""
    status: str = "Maintenance"
    due_back: Optional[date] = None
    id: Optional[str] = None
