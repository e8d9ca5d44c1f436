from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from html import escape
from typing import Any, Iterable, Mapping


@dataclass(frozen=True)
class FormField:
    name: str
    label: str
    kind: str = "text"
    lookup: str | None = None


EDIT_FORMS: dict[str, tuple[FormField, ...]] = {
    "rentals": (
        FormField("rental_date", "Rental Date", kind="date"),
        FormField("return_date", "Return Date", kind="date"),
        FormField("tool_id", "Select Tool", kind="select", lookup="tools"),
        FormField("user_id", "Select User", kind="select", lookup="users"),
        FormField("outlet_id", "Select Outlet", kind="select", lookup="outlets"),
    ),
    "tools": (
        FormField("name", "Name"),
        FormField("description", "Description", kind="textarea"),
        FormField("outlet_id", "Select Outlet", kind="select", lookup="outlets"),
    ),
    "users": (
        FormField("email", "Email", kind="email"),
        FormField("firstName", "First Name"),
        FormField("lastName", "Last Name"),
    ),
    "outlets": (
        FormField("name", "Name"),
        FormField("description", "Description", kind="textarea"),
        FormField("image", "Image"),
        FormField("user_id", "Select User", kind="select", lookup="users"),
    ),
}


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _layout(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        "<html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title></head>"
        f"<body><main>{body}</main></body></html>"
    )


def _error_box(error: Any) -> str:
    if error is None:
        return ""
    return f"<div class=\"error\" role=\"alert\"><pre>{escape(str(error))}</pre></div>"


def _render_field(spec: FormField, value: Any, options: list[tuple[str, str]]) -> str:
    current = _format_value(value)
    label = f"<label for=\"{spec.name}\">{escape(spec.label)}</label>"
    if spec.kind == "select":
        rendered_options = [f"<option value=\"\">{escape(spec.label)}</option>"]
        for option_value, option_label in options:
            selected = " selected" if option_value == current else ""
            rendered_options.append(
                f"<option value=\"{escape(option_value)}\"{selected}>{escape(option_label)}</option>"
            )
        control = f"<select id=\"{spec.name}\" name=\"{spec.name}\">{''.join(rendered_options)}</select>"
    elif spec.kind == "textarea":
        control = f"<textarea id=\"{spec.name}\" name=\"{spec.name}\">{escape(current)}</textarea>"
    else:
        control = f"<input id=\"{spec.name}\" name=\"{spec.name}\" type=\"{spec.kind}\" value=\"{escape(current)}\">"
    return f"<div class=\"form-control\">{label}{control}</div>"


def render_edit_page(
    title: str,
    action: str,
    fields: Iterable[FormField],
    values: Mapping[str, Any],
    options_by_field: Mapping[str, list[tuple[str, str]]],
    error: Any = None,
) -> str:
    rendered_fields = "".join(
        _render_field(spec, values.get(spec.name), options_by_field.get(spec.name, []))
        for spec in fields
    )
    body = (
        f"<h1>{escape(title)}</h1>"
        f"{_error_box(error)}"
        f"<form method=\"post\" action=\"{escape(action)}\">"
        f"{rendered_fields}"
        "<button type=\"submit\">Submit</button>"
        "</form>"
    )
    return _layout(title, body)


def render_list_page(title: str, entity: str, columns: Iterable[str], rows: Iterable[Mapping[str, Any]]) -> str:
    columns = list(columns)
    head = "".join(f"<th>{escape(column)}</th>" for column in columns)
    body_rows = []
    for row in rows:
        cells = "".join(f"<td>{escape(_format_value(row.get(column)))}</td>" for column in columns)
        edit_link = f"<a href=\"/{entity}/edit/{escape(str(row['id']))}\">Edit</a>"
        body_rows.append(f"<tr>{cells}<td>{edit_link}</td></tr>")
    body = (
        f"<h1>{escape(title)}</h1>"
        f"<table><thead><tr>{head}<th></th></tr></thead>"
        f"<tbody>{''.join(body_rows)}</tbody></table>"
    )
    return _layout(title, body)


def render_landing_page(session: Mapping[str, Any] | None, entities: Iterable[str]) -> str:
    if not session:
        body = "<h1>Rental Admin</h1><p>Sign in through the identity service to continue.</p>"
        return _layout("Rental Admin", body)
    links = "".join(f"<li><a href=\"/{entity}\">{escape(entity.title())}</a></li>" for entity in entities)
    body = (
        "<h1>Rental Admin</h1>"
        f"<p>Signed in as {escape(str(session.get('roqUserId')))} "
        f"(tenant {escape(str(session.get('tenantId')))})</p>"
        f"<ul>{links}</ul>"
    )
    return _layout("Rental Admin", body)


def render_error_page(title: str, error: Any) -> str:
    return _layout(title, f"<h1>{escape(title)}</h1>{_error_box(error)}")


def form_values(fields: Iterable[FormField], form: Mapping[str, Any]) -> dict[str, Any]:
    """Collect submitted form fields; blank inputs become None."""
    values: dict[str, Any] = {}
    for spec in fields:
        raw = form.get(spec.name)
        if raw is None:
            continue
        text = str(raw).strip()
        values[spec.name] = text or None
    return values
