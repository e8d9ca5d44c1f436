from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from pydantic import BaseModel
from sqlalchemy import inspect, select
from sqlalchemy.orm import Session, selectinload

from rental_admin.models.rental_models import Outlet, Rental, Tool, User
from rental_admin.schemas.outlets import OutletSchema
from rental_admin.schemas.rentals import RentalSchema
from rental_admin.schemas.tools import ToolSchema
from rental_admin.schemas.users import UserSchema


class RecordNotFoundError(LookupError):
    pass


class InvalidQueryError(ValueError):
    pass


@dataclass(frozen=True)
class EntityConfig:
    name: str
    label: str
    model: type
    schema: type[BaseModel]
    relations: tuple[str, ...] = ()
    # "self" when the table carries tenant_id, else the relationship that leads to one
    tenant_scope: str | None = None
    option_label: str = "name"
    list_columns: tuple[str, ...] = ()


ENTITIES: dict[str, EntityConfig] = {
    "rentals": EntityConfig(
        name="rental",
        label="Rental",
        model=Rental,
        schema=RentalSchema,
        relations=("tool", "user", "outlet"),
        tenant_scope="outlet",
        option_label="id",
        list_columns=("rental_date", "return_date", "tool_id", "user_id", "outlet_id"),
    ),
    "tools": EntityConfig(
        name="tool",
        label="Tool",
        model=Tool,
        schema=ToolSchema,
        relations=("outlet", "rentals"),
        tenant_scope="outlet",
        list_columns=("name", "description", "outlet_id"),
    ),
    "users": EntityConfig(
        name="user",
        label="User",
        model=User,
        schema=UserSchema,
        relations=("rentals", "outlets"),
        tenant_scope="self",
        option_label="email",
        list_columns=("email", "firstName", "lastName"),
    ),
    "outlets": EntityConfig(
        name="outlet",
        label="Outlet",
        model=Outlet,
        schema=OutletSchema,
        relations=("user", "tools", "rentals"),
        tenant_scope="self",
        list_columns=("name", "description", "user_id"),
    ),
}


def serialize_record(record: Any, relations: Iterable[str] = ()) -> dict[str, Any]:
    payload = {attr.key: getattr(record, attr.key) for attr in inspect(record).mapper.column_attrs}
    for relation in relations:
        related = getattr(record, relation)
        if related is None:
            payload[relation] = None
        elif isinstance(related, list):
            payload[relation] = [serialize_record(item) for item in related]
        else:
            payload[relation] = serialize_record(related)
    return payload


def parse_relations(config: EntityConfig, raw_values: Iterable[str]) -> list[str]:
    """Split ``relations`` query values ("tool,user" or repeated params) and check them."""
    requested: list[str] = []
    for raw in raw_values:
        for part in str(raw or "").split(","):
            name = part.strip()
            if not name or name in requested:
                continue
            if name not in config.relations:
                raise InvalidQueryError(f"Unknown relation '{name}' for {config.name}.")
            requested.append(name)
    return requested


def build_find_statement(config: EntityConfig, record_id: str, relations: Iterable[str] = ()):
    model = config.model
    stmt = select(model).where(model.id == record_id)
    for relation in relations:
        stmt = stmt.options(selectinload(getattr(model, relation)))
    return stmt


def find_record(db: Session, config: EntityConfig, record_id: str, relations: Iterable[str] = ()) -> Any:
    record = db.execute(build_find_statement(config, record_id, relations)).scalars().first()
    if record is None:
        raise RecordNotFoundError(f"{config.label} not found")
    return record


def scope_to_tenant(stmt, config: EntityConfig, tenant_id: str | None):
    """Restrict ``stmt`` to rows of ``tenant_id``; tools and rentals belong to their outlet's tenant."""
    if not tenant_id or not config.tenant_scope:
        return stmt
    model = config.model
    if config.tenant_scope == "self":
        return stmt.where(model.tenant_id == tenant_id)
    relation = getattr(model, config.tenant_scope)
    owner = relation.property.mapper.class_
    return stmt.join(relation).where(owner.tenant_id == tenant_id)


def list_records(
    db: Session,
    config: EntityConfig,
    *,
    tenant_id: str | None = None,
    relations: Iterable[str] = (),
    limit: int = 50,
    offset: int = 0,
) -> list[Any]:
    model = config.model
    stmt = scope_to_tenant(select(model), config, tenant_id)
    for relation in relations:
        stmt = stmt.options(selectinload(getattr(model, relation)))
    stmt = stmt.order_by(model.created_at.desc(), model.id).limit(limit).offset(offset)
    return db.execute(stmt).scalars().all()


def apply_fields(record: Any, fields: dict[str, Any]) -> None:
    for name, value in fields.items():
        setattr(record, name, value)
    record.updated_at = datetime.now()


def commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


def create_record(db: Session, config: EntityConfig, fields: dict[str, Any], **extra: Any) -> Any:
    record = config.model(**fields, **extra)
    record.created_at = datetime.now()
    record.updated_at = record.created_at
    db.add(record)
    commit(db)
    db.refresh(record)
    return record


def update_record(db: Session, config: EntityConfig, record_id: str, fields: dict[str, Any]) -> Any:
    record = db.get(config.model, record_id)
    if record is None:
        raise RecordNotFoundError(f"{config.label} not found")
    apply_fields(record, fields)
    commit(db)
    db.refresh(record)
    return record


def delete_record(db: Session, config: EntityConfig, record_id: str) -> dict[str, Any]:
    record = db.get(config.model, record_id)
    if record is None:
        raise RecordNotFoundError(f"{config.label} not found")
    payload = serialize_record(record)
    db.delete(record)
    commit(db)
    return payload
