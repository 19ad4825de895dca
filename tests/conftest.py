from datetime import date
from types import SimpleNamespace

import pytest
from flask import template_rendered

from app import create_app
from config import TestingConfig
from entities import Author, Book, BookInstance, Genre


@pytest.fixture
def app():
    return create_app(TestingConfig)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def catalog(app):
    return app.extensions["catalog"]


@pytest.fixture
def rendered(app):
    """Records (template name, context) for every template the app renders."""
    recorded = []

    def record(sender, template, context, **extra):
        recorded.append((template.name, context))

    template_rendered.connect(record, app)
    try:
        yield recorded
    finally:
        template_rendered.disconnect(record, app)


@pytest.fixture
def seeded(catalog):
    rothfuss = catalog.authors.insert(
        Author(first_name="Patrick", family_name="Rothfuss", date_of_birth=date(1973, 6, 6))
    )
    asimov = catalog.authors.insert(
        Author(first_name="Isaac", family_name="Asimov", date_of_birth=date(1920, 1, 2), date_of_death=date(1992, 4, 6))
    )
    bova = catalog.authors.insert(Author(first_name="Ben", family_name="Bova"))
    fantasy = catalog.genres.insert(Genre(name="Fantasy"))
    science_fiction = catalog.genres.insert(Genre(name="Science Fiction"))
    poetry = catalog.genres.insert(Genre(name="Poetry"))
    wind = catalog.books.insert(
        Book(
            title="The Name of the Wind",
            author=rothfuss.id,
            summary="The first day of Kvothe's story.",
            isbn="9781473211896",
            genre=[fantasy.id],
        )
    )
    apes = catalog.books.insert(
        Book(
            title="Apes and Angels",
            author=bova.id,
            summary="Humankind's first mission to the stars.",
            isbn="9780765379528",
            genre=[science_fiction.id, fantasy.id],
        )
    )
    copy = catalog.book_instances.insert(
        BookInstance(book=wind.id, imprint="Gollancz, 2011.", status="Available")
    )
    loaned = catalog.book_instances.insert(
        BookInstance(book=apes.id, imprint="Tor, 2016.", status="Loaned", due_back=date(2026, 11, 1))
    )
    return SimpleNamespace(
        rothfuss=rothfuss,
        asimov=asimov,
        bova=bova,
        fantasy=fantasy,
        science_fiction=science_fiction,
        poetry=poetry,
        wind=wind,
        apes=apes,
        copy=copy,
        loaned=loaned,
    )

