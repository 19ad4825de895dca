"""
Form rules for the catalog entities, built on WTForms.

Request data goes through ``normalize_form`` first, then one of the forms
below. ``collect_errors`` flattens a validated form into ``FieldError``s.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from markupsafe import escape
from werkzeug.datastructures import MultiDict
from wtforms import DateField, Field, Form, SelectField, StringField
from wtforms.validators import DataRequired, Optional, Regexp, ValidationError

ALPHANUMERIC = r"^[A-Za-z0-9]+$"


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


# -----------------------------
# Normalization
# -----------------------------
def to_list(raw_value: Any) -> List[str]:
    """
    Coerce a submitted value (missing, single or repeated) into a list of strings.
    """
    if raw_value is None:
        return []
    if isinstance(raw_value, (list, tuple)):
        return [str(v) for v in raw_value]
    return [str(raw_value)]


def normalize_form(raw: Mapping[str, Any], multi_fields: Sequence[str] = ()) -> MultiDict:
    """
    Build a fresh MultiDict from request data. Fields in ``multi_fields``
    always end up as a list (possibly empty); every other field keeps its
    first value. ``raw`` is left untouched.
    """
    data = MultiDict()
    for key in raw:
        values = raw.getlist(key) if isinstance(raw, MultiDict) else to_list(raw[key])
        if key in multi_fields:
            data.setlist(key, to_list(values))
        elif values:
            data[key] = values[0]
    for key in multi_fields:
        if key not in data:
            data.setlist(key, [])
    return data


def mark_selected(options: Iterable[Any], selected_ids: Iterable[str]) -> List[Tuple[Any, bool]]:
    """
    Pair every option with whether its id is among ``selected_ids``.
    """
    selected = {str(i) for i in selected_ids}
    return [(option, str(option.id) in selected) for option in options]


def collect_errors(form: Form) -> List[FieldError]:
    errors = []
    for name, messages in form.errors.items():
        for message in messages:
            errors.append(FieldError(name or "", message))
    return errors


# -----------------------------
# Filters / fields
# -----------------------------
def strip_filter(value):
    return value.strip() if isinstance(value, str) else value


def escape_filter(value):
    return str(escape(value)) if isinstance(value, str) else value


def escape_each(values):
    return [escape_filter(v) for v in values or []]


TEXT_FILTERS = [strip_filter, escape_filter]


class ListField(Field):
    """
    Keeps every submitted value for its name, in order.
    """

    def __init__(self, label=None, validators=None, **kwargs):
        kwargs.setdefault("default", list)
        super().__init__(label, validators, **kwargs)

    def process_formdata(self, valuelist):
        self.data = list(valuelist)


class IsoDateField(DateField):
    """
    YYYY-MM-DD date with a caller-supplied message for unparseable input.
    """

    def __init__(self, label=None, validators=None, message=None, **kwargs):
        super().__init__(label, validators, format="%Y-%m-%d", **kwargs)
        self.message = message

    def process_formdata(self, valuelist):
        try:
            super().process_formdata(valuelist)
        except ValueError as exc:
            raise ValueError(self.message or str(exc)) from exc


# -----------------------------
# Forms
# -----------------------------
class AuthorForm(Form):
    first_name = StringField(
        "First name",
        filters=TEXT_FILTERS,
        validators=[
            DataRequired("First name must be specified."),
            Regexp(ALPHANUMERIC, message="First name has non-alphanumeric characters."),
        ],
    )
    family_name = StringField(
        "Family name",
        filters=TEXT_FILTERS,
        validators=[
            DataRequired("Family name must be specified."),
            Regexp(ALPHANUMERIC, message="Family name has non-alphanumeric characters."),
        ],
    )
    date_of_birth = IsoDateField("Date of birth", validators=[Optional()], message="Invalid date of birth")
    date_of_death = IsoDateField("Date of death", validators=[Optional()], message="Invalid date of death")

    def validate_date_of_death(self, field):
        if field.data and self.date_of_birth.data and field.data < self.date_of_birth.data:
            raise ValidationError("Date of death cannot be earlier than date of birth.")


class GenreForm(Form):
    name = StringField("Name", filters=TEXT_FILTERS, validators=[DataRequired("Genre name required")])


class BookForm(Form):
    title = StringField("Title", filters=TEXT_FILTERS, validators=[DataRequired("Title must not be empty.")])
    author = StringField("Author", filters=TEXT_FILTERS, validators=[DataRequired("Author must not be empty.")])
    summary = StringField("Summary", filters=TEXT_FILTERS, validators=[DataRequired("Summary must not be empty.")])
    isbn = StringField("ISBN", filters=TEXT_FILTERS, validators=[DataRequired("ISBN must not be empty")])
    genre = ListField("Genre", filters=[escape_each])


class BookInstanceForm(Form):
    book = StringField("Book", filters=TEXT_FILTERS, validators=[DataRequired("Book must be specified")])
    imprint = StringField("Imprint", filters=TEXT_FILTERS, validators=[DataRequired("Imprint must be specified")])
    status = SelectField("Status", filters=[escape_filter])
    due_back = IsoDateField("Date when book available", validators=[Optional()], message="Invalid date")

    def __init__(self, formdata=None, statuses: Sequence[str] = (), **kwargs):
        super().__init__(formdata, **kwargs)
        self.status.choices = list(statuses)
