"""Model metadata contract.

:class:`ModelMeta` is everything the core reads about a model: table
name (or a query exposed as a CTE), the table writes go to, columns,
primary key, default filter/order/group, and per-model hard limits. The
model facade builds one per class at class-creation time; tests and
tooling can build them directly.

Model tags are registered process-wide so that ``(model_tag, column_name)``
stays globally unique.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from tablespine.column import Column, OrderColumn, as_order
from tablespine.conditions import normalize_conditions
from tablespine.errors import ContractError


@dataclass(frozen=True, eq=False)
class ModelMeta:
    model_tag: str
    table_name: str
    columns: tuple[Column, ...]
    primary_key: tuple[Column, ...] = ()
    update_table_name: str | None = None
    query: str | None = None
    query_params: tuple[Any, ...] = ()
    default_filter: tuple[Any, ...] = ()
    default_order: tuple[OrderColumn, ...] = ()
    default_group: tuple[Column | str, ...] = ()
    find_hard_limit: int | None = None
    has_many_hard_limit: int | None = None
    relations: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        """Short model name for messages (last segment of the tag)."""
        return self.model_tag.rsplit(".", 1)[-1]

    @property
    def write_table(self) -> str:
        return self.update_table_name or self.table_name

    @property
    def is_query_based(self) -> bool:
        return self.query is not None

    def owns(self, column: Column) -> bool:
        return column.model_tag == self.model_tag

    def column(self, name: str) -> Column:
        """Look up by property name first, then by column name."""
        for col in self.columns:
            if col.property_name == name:
                return col
        for col in self.columns:
            if col.column_name == name:
                return col
        raise ContractError(f"{self.name} has no column {name!r}", field=name)

    def require_writable(self, operation: str) -> None:
        if self.is_query_based and self.update_table_name is None:
            raise ContractError(
                f"{operation} on query-based model {self.name} needs update_table_name",
                constraint="writable",
            ).with_context(model=self.name, operation=operation)

    def require_primary_key(self, operation: str) -> tuple[Column, ...]:
        if not self.primary_key:
            raise ContractError(
                f"{operation} on {self.name} requires a primary key",
                constraint="primary_key",
            ).with_context(model=self.name, operation=operation)
        return self.primary_key


def build_meta(
    model_tag: str,
    table_name: str,
    columns: Sequence[Column],
    *,
    update_table_name: str | None = None,
    query: str | None = None,
    query_params: Sequence[Any] = (),
    default_filter: Any = None,
    default_order: Sequence[OrderColumn | Column | str] = (),
    default_group: Sequence[Column | str] = (),
    find_hard_limit: int | None = None,
    has_many_hard_limit: int | None = None,
) -> ModelMeta:
    """Assemble a :class:`ModelMeta`, deriving the primary key from the columns."""
    seen: set[str] = set()
    for col in columns:
        if col.model_tag != model_tag:
            raise ContractError(
                f"column {col!r} belongs to {col.model_tag}, not {model_tag}",
                field=col.property_name,
            )
        if col.column_name in seen:
            raise ContractError(
                f"{model_tag} declares column {col.column_name!r} twice",
                field=col.column_name,
            )
        seen.add(col.column_name)

    return ModelMeta(
        model_tag=model_tag,
        table_name=table_name,
        columns=tuple(columns),
        primary_key=tuple(c for c in columns if c.primary_key),
        update_table_name=update_table_name,
        query=query,
        query_params=tuple(query_params),
        default_filter=tuple(normalize_conditions(default_filter)),
        default_order=tuple(as_order(t) for t in default_order),
        default_group=tuple(default_group),
        find_hard_limit=find_hard_limit,
        has_many_hard_limit=has_many_hard_limit,
    )


# =========================================================================
# Registry
# =========================================================================

# model_tag -> qualified name of the defining class
_MODEL_TAGS: dict[str, str] = {}


def register_model_tag(model_tag: str, owner: str) -> None:
    """Claim ``model_tag`` for ``owner``.

    Re-registering from the same owner (module reload) is allowed; a
    different owner claiming the tag is a contract violation.
    """
    current = _MODEL_TAGS.get(model_tag)
    if current is not None and current != owner:
        raise ContractError(
            f"model tag {model_tag!r} already registered by {current}",
            field="model_tag",
            value=model_tag,
        )
    _MODEL_TAGS[model_tag] = owner


# model_tag -> metadata of the declared model
_MODEL_METAS: dict[str, ModelMeta] = {}


def register_model_meta(meta: ModelMeta) -> None:
    _MODEL_METAS[meta.model_tag] = meta


def get_model_meta(model_tag: str) -> ModelMeta:
    """Metadata for a declared model; unknown tags are a contract violation."""
    try:
        return _MODEL_METAS[model_tag]
    except KeyError:
        raise ContractError(
            f"no model declared with tag {model_tag!r}", field="model_tag", value=model_tag
        ) from None


def registered_model_tags() -> list[str]:
    return sorted(_MODEL_TAGS)


__all__ = [
    "ModelMeta",
    "build_meta",
    "get_model_meta",
    "register_model_meta",
    "register_model_tag",
    "registered_model_tags",
]
