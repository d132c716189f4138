"""Phlebotomist assignment: resolving a selection into the bound field pair."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from labcenter.core.exceptions import ValidationException

PHLEBO_FIELDS = ("phlebo_id", "phlebo_name")


@dataclass(frozen=True)
class PhleboBinding:
    """A resolved phlebotomist; both fields are always present."""

    phlebo_id: UUID
    phlebo_name: str

    def __post_init__(self) -> None:
        name = (self.phlebo_name or "").strip()
        if not name:
            raise ValidationException("A phlebotomist with a name must be selected")
        object.__setattr__(self, "phlebo_name", name)


def _as_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationException(f"Invalid phlebotomist id: {value!r}")


def resolve_phlebo(phlebo_id: UUID | str | None, candidates: Iterable[Mapping[str, Any]]) -> PhleboBinding:
    """
    Resolve a phlebotomist selection against the known phlebotomists.

    Args:
        phlebo_id: Selected phlebotomist id
        candidates: Identity projections with ``id`` and ``full_name`` (or ``name``)

    Returns:
        The binding to apply

    Raises:
        ValidationException: If nothing was selected, the id is unknown or the
            phlebotomist has no name
    """
    if phlebo_id is None or str(phlebo_id).strip() == "":
        raise ValidationException("Please select a phlebotomist")

    wanted = _as_uuid(phlebo_id)
    for candidate in candidates:
        if _as_uuid(candidate["id"]) == wanted:
            name = candidate.get("full_name") or candidate.get("name") or ""
            return PhleboBinding(phlebo_id=wanted, phlebo_name=name)

    raise ValidationException(f"Phlebotomist {wanted} not found")


def bind_fields(binding: PhleboBinding) -> dict[str, Any]:
    """Fields written when binding a phlebotomist."""
    return {"phlebo_id": binding.phlebo_id, "phlebo_name": binding.phlebo_name}


def clear_fields() -> dict[str, Any]:
    """Fields written when unbinding a phlebotomist."""
    return {"phlebo_id": None, "phlebo_name": None}


def is_assigned(record: Mapping[str, Any]) -> bool:
    """True when the record carries a phlebotomist binding."""
    check_binding_consistency(record)
    return record.get("phlebo_id") is not None


def check_binding_consistency(record: Mapping[str, Any]) -> None:
    """Raise if exactly one of ``phlebo_id`` / ``phlebo_name`` is set."""
    has_id = record.get("phlebo_id") is not None
    has_name = bool(record.get("phlebo_name"))
    if has_id != has_name:
        raise ValidationException("Phlebotomist id and name must be set or cleared together")
