"""
Catalog controllers.

``EntityController`` implements the list/detail/create/delete/update workflow
once. Each subclass only names the store, form, templates and related records
that belong to its entity.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for
from werkzeug.datastructures import MultiDict
from werkzeug.exceptions import NotFound
from wtforms import Form

import entities
from entities import ref_id
from forms import (
    AuthorForm,
    BookForm,
    BookInstanceForm,
    FieldError,
    GenreForm,
    collect_errors,
    mark_selected,
    normalize_form,
)
from stores import Catalog, DuplicateEntity, EntityNotFound, EntityStore


def get_catalog() -> Catalog:
    return current_app.extensions["catalog"]


class EntityController:
    entity_type: type = None
    store_name = ""
    # endpoint prefix, template prefix and template variable
    name = ""
    label = ""
    form_class: type = None
    multi_fields: Tuple[str, ...] = ()
    unique_field: Optional[str] = None

    list_sort: Optional[str] = None
    list_projection: Optional[Tuple[str, ...]] = None
    list_populate: Tuple[str, ...] = ()
    detail_populate: Tuple[str, ...] = ()

    # (store, reference field, template variable); deletion is refused while any exist
    dependents: Optional[Tuple[str, str, str]] = None

    @property
    def catalog(self) -> Catalog:
        return get_catalog()

    @property
    def store(self) -> EntityStore:
        return self.catalog.store_for(self.store_name)

    def register(self, blueprint: Blueprint) -> None:
        segment = self.entity_type.collection
        blueprint.add_url_rule(f"/{segment}", f"{self.name}_list", self.list_view)
        blueprint.add_url_rule(f"/{segment}/create", f"{self.name}_create", self.create, methods=["GET", "POST"])
        blueprint.add_url_rule(f"/{segment}/<entity_id>", f"{self.name}_detail", self.detail)
        blueprint.add_url_rule(
            f"/{segment}/<entity_id>/delete", f"{self.name}_delete", self.delete, methods=["GET", "POST"]
        )
        blueprint.add_url_rule(
            f"/{segment}/<entity_id>/update", f"{self.name}_update", self.update, methods=["GET", "POST"]
        )

    # -----------------------------
    # Read path
    # -----------------------------
    def list_view(self):
        """
        Display list of all records.
        """
        items = self.store.find(projection=self.list_projection, sort=self.list_sort, populate=self.list_populate)
        return render_template(f"{self.name}_list.html", title=f"{self.label} List", **{f"{self.name}_list": items})

    def detail(self, entity_id: str):
        """
        Display detail page for one record. Unknown ids are a 404.
        """
        entity = self.store.find_by_id(entity_id, populate=self.detail_populate)
        if entity is None:
            raise NotFound(f"{self.label} not found.")
        return render_template(
            f"{self.name}_detail.html",
            title=self.detail_title(entity),
            **{self.name: entity},
            **self.related(entity_id),
        )

    def detail_title(self, entity) -> str:
        return f"{self.label} Detail"

    def related(self, entity_id: str) -> Dict[str, list]:
        return {}

    # -----------------------------
    # Create / update
    # -----------------------------
    def create(self):
        """
        Display the create form on GET, handle it on POST.
        """
        title = f"Create {self.label}"
        if request.method == "POST":
            return self.submit(title)
        return self.render_form(self.entity_type(), title)

    def update(self, entity_id: str):
        """
        Display the update form pre-filled with the stored record on GET, handle it on POST.
        """
        title = f"Update {self.label}"
        if request.method == "POST":
            return self.submit(title, entity_id)
        entity = self.store.find_by_id(entity_id, populate=self.detail_populate)
        if entity is None:
            raise NotFound(f"{self.label} not found.")
        return self.render_form(entity, title)

    def submit(self, title: str, entity_id: Optional[str] = None):
        data = self.normalize(request.form)
        form, errors = self.validate(data, entity_id)
        return self.process(form, errors, title, entity_id)

    def normalize(self, raw) -> MultiDict:
        return normalize_form(raw, self.multi_fields)

    def validate(self, data: MultiDict, entity_id: Optional[str] = None) -> Tuple[Form, List[FieldError]]:
        form = self.make_form(data)
        form.validate()
        return form, collect_errors(form)

    def make_form(self, data: MultiDict) -> Form:
        return self.form_class(data)

    def build_candidate(self, form: Form, entity_id: Optional[str] = None):
        raise NotImplementedError

    def process(self, form: Form, errors: List[FieldError], title: str, entity_id: Optional[str] = None):
        # The candidate is built even when invalid so the form can be redisplayed with it.
        candidate = self.build_candidate(form, entity_id)
        if errors:
            current_app.logger.debug("Redisplaying %s form with %d error(s)", self.label, len(errors))
            return self.render_form(candidate, title, errors)

        if self.unique_field:
            match = self.store.find_one({self.unique_field: getattr(candidate, self.unique_field)})
            if match is not None:
                return redirect(match.url)

        try:
            if entity_id is None:
                saved = self.store.insert(candidate)
                action = "created"
            else:
                saved = self.store.update_by_id(entity_id, candidate)
                action = "updated"
        except DuplicateEntity as exc:
            # Lost the race against a concurrent write of the same value.
            if exc.existing is None:
                raise
            return redirect(exc.existing.url)
        except EntityNotFound as exc:
            raise NotFound(f"{self.label} not found.") from exc

        current_app.logger.info("%s %s %s", self.label, saved.id, action)
        flash(f"{self.label} {action} successfully.", "success")
        return redirect(saved.url)

    def render_form(self, entity, title: str, errors: List[FieldError] = ()):
        return render_template(
            f"{self.name}_form.html",
            title=title,
            errors=list(errors),
            **{self.name: entity},
            **self.form_options(entity),
        )

    def form_options(self, entity) -> Dict[str, object]:
        return {}

    # -----------------------------
    # Delete
    # -----------------------------
    def delete(self, entity_id: str):
        """
        Display the delete confirmation on GET, handle it on POST.
        Unknown ids go back to the list page instead of a 404.
        """
        if request.method == "POST":
            return self.delete_post(entity_id)
        entity = self.store.find_by_id(entity_id, populate=self.detail_populate)
        if entity is None:
            return redirect(url_for(f"catalog.{self.name}_list"))
        return self.render_delete(entity, self.load_dependents(entity_id))

    def delete_post(self, entity_id: str):
        dependents = self.load_dependents(entity_id)
        if any(dependents.values()):
            current_app.logger.warning("Refusing to delete %s %s: dependent records exist", self.label, entity_id)
            entity = self.store.find_by_id(entity_id, populate=self.detail_populate)
            return self.render_delete(entity, dependents)

        try:
            self.store.delete_by_id(entity_id)
        except EntityNotFound:
            current_app.logger.info("%s %s already deleted", self.label, entity_id)
        else:
            current_app.logger.info("%s %s deleted", self.label, entity_id)
            flash(f"{self.label} deleted successfully.", "success")
        return redirect(url_for(f"catalog.{self.name}_list"))

    def load_dependents(self, entity_id: str) -> Dict[str, list]:
        if self.dependents is None:
            return {}
        store_name, field, variable = self.dependents
        return {variable: self.catalog.store_for(store_name).find({field: entity_id})}

    def render_delete(self, entity, dependents: Dict[str, list]):
        return render_template(
            f"{self.name}_delete.html",
            title=f"Delete {self.label}",
            **{self.name: entity},
            **dependents,
        )


class AuthorController(EntityController):
    entity_type = entities.Author
    store_name = "authors"
    name = "author"
    label = "Author"
    form_class = AuthorForm
    list_sort = "family_name"
    dependents = ("books", "author", "author_books")

    def related(self, entity_id):
        return {"author_books": self.catalog.books.find({"author": entity_id}, projection=("title", "summary"))}

    def build_candidate(self, form, entity_id=None):
        return entities.Author(
            first_name=form.first_name.data or "",
            family_name=form.family_name.data or "",
            date_of_birth=form.date_of_birth.data,
            date_of_death=form.date_of_death.data,
            id=entity_id,
        )


class GenreController(EntityController):
    entity_type = entities.Genre
    store_name = "genres"
    name = "genre"
    label = "Genre"
    form_class = GenreForm
    unique_field = "name"
    list_sort = "name"
    dependents = ("books", "genre", "genre_books")

    def related(self, entity_id):
        return {"genre_books": self.catalog.books.find({"genre": entity_id})}

    def build_candidate(self, form, entity_id=None):
        return entities.Genre(name=form.name.data or "", id=entity_id)


class BookController(EntityController):
    entity_type = entities.Book
    store_name = "books"
    name = "book"
    label = "Book"
    form_class = BookForm
    multi_fields = ("genre",)
    list_sort = "title"
    list_projection = ("title", "author")
    list_populate = ("author",)
    detail_populate = ("author", "genre")

    def detail_title(self, entity):
        return entity.title

    def related(self, entity_id):
        return {"book_instances": self.catalog.book_instances.find({"book": entity_id})}

    def build_candidate(self, form, entity_id=None):
        return entities.Book(
            title=form.title.data or "",
            author=form.author.data or None,
            summary=form.summary.data or "",
            isbn=form.isbn.data or "",
            genre=list(form.genre.data or []),
            id=entity_id,
        )

    def form_options(self, entity):
        genres = self.catalog.genres.find(sort="name")
        return {
            "authors": self.catalog.authors.find(sort="family_name"),
            "genres": mark_selected(genres, entity.genre_ids),
            "selected_author": ref_id(entity.author),
        }


class BookInstanceController(EntityController):
    entity_type = entities.BookInstance
    store_name = "book_instances"
    name = "bookinstance"
    label = "Book Instance"
    form_class = BookInstanceForm
    list_populate = ("book",)
    detail_populate = ("book",)

    def detail_title(self, entity):
        if isinstance(entity.book, entities.Book):
            return f"Copy: {entity.book.title}"
        return super().detail_title(entity)

    def make_form(self, data):
        return self.form_class(data, statuses=self.store.enum_values("status"))

    def validate(self, data, entity_id=None):
        form, errors = super().validate(data, entity_id)
        # due_back is optional on its own, but an updated copy that is out needs a return date.
        if (
            entity_id is not None
            and form.status.data != "Available"
            and form.due_back.data is None
            and not form.due_back.errors
        ):
            errors.append(FieldError("due_back", "Invalid date"))
        return form, errors

    def build_candidate(self, form, entity_id=None):
        return entities.BookInstance(
            book=form.book.data or None,
            imprint=form.imprint.data or "",
            status=form.status.data or "",
            due_back=form.due_back.data,
            id=entity_id,
        )

    def form_options(self, entity):
        return {
            "books": self.catalog.books.find(projection=("title",), sort="title"),
            "statuses": self.store.enum_values("status"),
            "selected_book": ref_id(entity.book),
        }


CONTROLLERS = (AuthorController, BookController, GenreController, BookInstanceController)


def index():
    """
    Catalog home page: record counts.
    """
    catalog = get_catalog()
    data = {
        "book_count": catalog.books.count(),
        "book_instance_count": catalog.book_instances.count(),
        "book_instance_available_count": catalog.book_instances.count({"status": "Available"}),
        "author_count": catalog.authors.count(),
        "genre_count": catalog.genres.count(),
    }
    return render_template("index.html", title="Local Library Home", data=data)


def create_blueprint() -> Blueprint:
    blueprint = Blueprint("catalog", __name__, url_prefix="/catalog")
    blueprint.add_url_rule("/", "index", index)
    for controller_class in CONTROLLERS:
        controller_class().register(blueprint)
    return blueprint
