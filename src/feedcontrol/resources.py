"""Create/list/delete workflow over the admin-owned topic and rule collections."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Mapping, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from feedcontrol.errors import ValidationError
from feedcontrol.models import Rule, Topic, parse_payload
from feedcontrol.session import SessionManager

__all__ = ["EditBuffer", "ResourceListEditor", "rule_editor", "topic_editor"]

EntryT = TypeVar("EntryT", bound=BaseModel)


@dataclass(slots=True)
class EditBuffer:
    """Staged field values for one entry, resubmitted as a new ``create``."""

    values: Dict[str, Any] = field(default_factory=dict)


class ResourceListEditor(Generic[EntryT]):
    """Manage one named collection; only ``create`` and ``delete`` are ever sent."""

    def __init__(
        self,
        sessions: SessionManager,
        name: str,
        model: Type[EntryT],
        *,
        key_field: str,
    ) -> None:
        self._sessions = sessions
        self.name = name
        self.model = model
        self.key_field = key_field
        self.items: List[EntryT] = []
        self.extras: Dict[str, Any] = {}
        self.buffer: EditBuffer | None = None

    @property
    def path(self) -> str:
        return f"/{self.name}"

    def clear(self) -> None:
        self.items = []
        self.extras = {}
        self.buffer = None

    def list(self) -> List[EntryT]:
        payload = self._sessions.call("GET", self.path)
        self.items = parse_payload(self._entries, payload, self.path)
        self.extras = {key: value for key, value in payload.items() if key != "items"}
        return self.items

    def _entries(self, payload: Mapping[str, Any]) -> List[EntryT]:
        return [self.model.model_validate(raw) for raw in payload.get("items") or []]

    def create(self, fields: Mapping[str, Any]) -> List[EntryT]:
        """Submit ``fields`` and re-fetch the whole collection."""

        values = {key: value for key, value in fields.items() if key != "id"}
        try:
            entry = self.model.model_validate(values)
        except SchemaError as exc:
            raise ValidationError(f"invalid {self.name[:-1]}: {exc.errors()[0]['msg']}") from exc
        if not str(getattr(entry, self.key_field) or "").strip():
            raise ValidationError(f"{self.key_field} is required")

        self._sessions.call("POST", self.path, json=entry.model_dump(exclude={"id"}))
        self.buffer = None
        return self.list()

    def delete(self, entry_id: int) -> List[EntryT]:
        self._sessions.call("DELETE", self.path, params={"id": entry_id})
        return self.list()

    def find(self, entry_id: int) -> EntryT | None:
        return next((entry for entry in self.items if getattr(entry, "id", None) == entry_id), None)

    def edit(self, entry_id: int) -> EditBuffer:
        """Stage a displayed entry's attributes; replaces any earlier buffer."""

        entry = self.find(entry_id)
        if entry is None:
            raise ValidationError(f"unknown {self.name[:-1]} {entry_id}")
        self.buffer = EditBuffer(values=entry.model_dump(exclude={"id"}))
        return self.buffer

    def submit(self, overrides: Mapping[str, Any] | None = None) -> List[EntryT]:
        """Create from the staged buffer, with ``overrides`` applied on top."""

        values: Dict[str, Any] = dict(self.buffer.values) if self.buffer else {}
        values.update(overrides or {})
        return self.create(values)


def topic_editor(sessions: SessionManager) -> ResourceListEditor[Topic]:
    return ResourceListEditor(sessions, "topics", Topic, key_field="query")


def rule_editor(sessions: SessionManager) -> ResourceListEditor[Rule]:
    return ResourceListEditor(sessions, "rules", Rule, key_field="pattern")
