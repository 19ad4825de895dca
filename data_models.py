from __future__ import annotations
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

BOOK_INSTANCE_STATUSES = ("Available", "Maintenance", "Loaned", "Reserved")


book_genre = db.Table(
    "book_genre",
    db.Column("book_id", db.Integer, db.ForeignKey("book.id", ondelete="CASCADE"), primary_key=True),
    db.Column("genre_id", db.Integer, db.ForeignKey("genre.id"), primary_key=True),
)


class Author(db.Model):
    """
    Author model.
    """
    __tablename__ = "author"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    first_name = db.Column(db.String(100), nullable=False)
    family_name = db.Column(db.String(100), nullable=False, index=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    date_of_death = db.Column(db.Date, nullable=True)

    def __repr__(self) -> str:
        return f"<Author id={self.id} family_name={self.family_name!r}>"


class Genre(db.Model):
    """
    Genre model.
    """
    __tablename__ = "genre"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    name = db.Column(db.String(100), nullable=False, unique=True, index=True)

    def __repr__(self) -> str:
        return f"<Genre id={self.id} name={self.name!r}>"


class Book(db.Model):
    """
    Book model.
    """
    __tablename__ = "book"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    title = db.Column(db.String(200), nullable=False, index=True)
    summary = db.Column(db.Text, nullable=False)
    isbn = db.Column(db.String(32), nullable=False)

    author_id = db.Column(
        db.Integer,
        db.ForeignKey("author.id"),
        nullable=False,
        index=True,
    )
    author = db.relationship("Author")
    genres = db.relationship("Genre", secondary=book_genre)

    def __repr__(self) -> str:
        return f"<Book id={self.id} title={self.title!r}>"


class BookInstance(db.Model):
    """
    BookInstance model: one physical copy of a book.
    """
    __tablename__ = "book_instance"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    imprint = db.Column(db.String(200), nullable=False)
    status = db.Column(
        db.Enum(*BOOK_INSTANCE_STATUSES, name="book_instance_status"),
        nullable=False,
        default="Maintenance",
    )
    due_back = db.Column(db.Date, nullable=True)

    book_id = db.Column(
        db.Integer,
        db.ForeignKey("book.id"),
        nullable=False,
        index=True,
    )
    book = db.relationship("Book")

    def __repr__(self) -> str:
        return f"<BookInstance id={self.id} status={self.status!r}>"
