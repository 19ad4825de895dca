"""Tests for the Flask-SQLAlchemy entity stores, against in-memory SQLite."""

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app import create_app
from config import SqlTestingConfig
from data_models import db
from entities import Author, Book, BookInstance, Genre
from stores import DuplicateEntity, EntityNotFound, StoreError


@pytest.fixture
def sql_catalog():
    app = create_app(SqlTestingConfig)
    with app.app_context():
        yield app.extensions["catalog"]


class TestSqlStoreReads:
    def test_insert_and_find_by_id(self, sql_catalog) -> None:
        author = sql_catalog.authors.insert(
            Author(first_name="Isaac", family_name="Asimov", date_of_birth=date(1920, 1, 2))
        )
        assert author.id == "1"
        found = sql_catalog.authors.find_by_id(author.id)
        assert found == author
        assert found.date_of_birth == date(1920, 1, 2)

    def test_malformed_or_unknown_id(self, sql_catalog) -> None:
        assert sql_catalog.authors.find_by_id("abc") is None
        assert sql_catalog.authors.find_by_id("999") is None

    def test_ids_beyond_integer_range_match_nothing(self, sql_catalog) -> None:
        author = sql_catalog.authors.insert(Author(first_name="Frank", family_name="Herbert"))
        sql_catalog.books.insert(Book(title="Dune", author=author.id, summary="Spice.", isbn="1"))
        huge = "99999999999999999999"
        assert sql_catalog.authors.find_by_id(huge) is None
        assert sql_catalog.authors.find_by_id(str(2 ** 63)) is None
        assert sql_catalog.books.find({"author": huge}) == []
        assert sql_catalog.books.count({"genre": huge}) == 0
        with pytest.raises(EntityNotFound):
            sql_catalog.authors.update_by_id(huge, Author(first_name="A", family_name="B"))
        with pytest.raises(EntityNotFound):
            sql_catalog.authors.delete_by_id(huge)

    def test_sort_and_count(self, sql_catalog) -> None:
        for name in ("Poetry", "Fantasy", "Horror"):
            sql_catalog.genres.insert(Genre(name=name))
        assert [g.name for g in sql_catalog.genres.find(sort="name")] == ["Fantasy", "Horror", "Poetry"]
        assert sql_catalog.genres.count() == 3
        assert sql_catalog.genres.count({"name": "Horror"}) == 1

    def test_references_and_population(self, sql_catalog) -> None:
        author = sql_catalog.authors.insert(Author(first_name="Frank", family_name="Herbert"))
        scifi = sql_catalog.genres.insert(Genre(name="Science Fiction"))
        classic = sql_catalog.genres.insert(Genre(name="Classic"))
        book = sql_catalog.books.insert(
            Book(title="Dune", author=author.id, summary="Spice.", isbn="9780441013593", genre=[scifi.id, classic.id])
        )

        plain = sql_catalog.books.find_by_id(book.id)
        assert plain.author == author.id
        assert sorted(plain.genre) == sorted([scifi.id, classic.id])

        populated = sql_catalog.books.find_by_id(book.id, populate=("author", "genre"))
        assert populated.author == author
        assert {g.name for g in populated.genre} == {"Science Fiction", "Classic"}

        assert [b.title for b in sql_catalog.books.find({"author": author.id})] == ["Dune"]
        assert [b.title for b in sql_catalog.books.find({"genre": classic.id})] == ["Dune"]
        assert sql_catalog.books.find({"genre": "not-an-id"}) == []

    def test_projection(self, sql_catalog) -> None:
        author = sql_catalog.authors.insert(Author(first_name="Frank", family_name="Herbert"))
        sql_catalog.books.insert(Book(title="Dune", author=author.id, summary="Spice.", isbn="1"))
        [book] = sql_catalog.books.find(projection=("title", "author"), populate=("author",))
        assert book.title == "Dune"
        assert book.author == author
        assert book.summary == ""

    def test_enum_values(self, sql_catalog) -> None:
        assert sql_catalog.book_instances.enum_values("status") == [
            "Available", "Maintenance", "Loaned", "Reserved",
        ]


class TestSqlStoreWrites:
    def test_update_by_id(self, sql_catalog) -> None:
        author = sql_catalog.authors.insert(Author(first_name="Frank", family_name="Herbert"))
        book = sql_catalog.books.insert(Book(title="Dune", author=author.id, summary="Spice.", isbn="1"))
        copy = sql_catalog.book_instances.insert(BookInstance(book=book.id, imprint="Ace", status="Available"))

        updated = sql_catalog.book_instances.update_by_id(
            copy.id, BookInstance(book=book.id, imprint="Ace", status="Loaned", due_back=date(2026, 12, 1))
        )
        assert updated.id == copy.id
        stored = sql_catalog.book_instances.find_by_id(copy.id)
        assert stored.status == "Loaned"
        assert stored.due_back == date(2026, 12, 1)
        assert sql_catalog.book_instances.count() == 1

    def test_update_unknown_id(self, sql_catalog) -> None:
        with pytest.raises(EntityNotFound):
            sql_catalog.genres.update_by_id("42", Genre(name="Fantasy"))

    def test_delete_by_id(self, sql_catalog) -> None:
        genre = sql_catalog.genres.insert(Genre(name="Fantasy"))
        sql_catalog.genres.delete_by_id(genre.id)
        assert sql_catalog.genres.count() == 0
        with pytest.raises(EntityNotFound):
            sql_catalog.genres.delete_by_id(genre.id)

    def test_delete_book_clears_genre_links(self, sql_catalog) -> None:
        author = sql_catalog.authors.insert(Author(first_name="Frank", family_name="Herbert"))
        genre = sql_catalog.genres.insert(Genre(name="Science Fiction"))
        book = sql_catalog.books.insert(Book(title="Dune", author=author.id, summary="Spice.", isbn="1", genre=[genre.id]))
        sql_catalog.books.delete_by_id(book.id)
        assert sql_catalog.books.find({"genre": genre.id}) == []
        assert sql_catalog.genres.count() == 1

    def test_unique_name_conflict_is_translated(self, sql_catalog) -> None:
        existing = sql_catalog.genres.insert(Genre(name="Fantasy"))
        with pytest.raises(DuplicateEntity) as excinfo:
            sql_catalog.genres.insert(Genre(name="Fantasy"))
        assert excinfo.value.existing == existing
        assert sql_catalog.genres.count() == 1

    def test_other_integrity_errors_become_store_errors(self, sql_catalog) -> None:
        with pytest.raises(StoreError):
            sql_catalog.books.insert(Book(title="Orphan", author=None, summary="s", isbn="1"))
        # The session was rolled back and is still usable.
        assert sql_catalog.books.count() == 0


class TestSqlStoreReadFailures:
    def test_read_fault_becomes_store_error(self, sql_catalog, monkeypatch) -> None:
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(db.session, "get", broken)
        with pytest.raises(StoreError):
            sql_catalog.authors.find_by_id("1")

    def test_query_fault_becomes_store_error_and_session_recovers(self, sql_catalog, monkeypatch) -> None:
        sql_catalog.genres.insert(Genre(name="Fantasy"))

        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        with monkeypatch.context() as patch:
            patch.setattr(Session, "execute", broken)
            with pytest.raises(StoreError):
                sql_catalog.genres.count()
        assert sql_catalog.genres.count() == 1
