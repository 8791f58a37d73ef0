"""
Entity resolution and command execution.

Commands never touch the host's collections directly: the resolver reads the
snapshot it is handed, decides which entity a reference denotes and what the
result should look like, and passes that to the host's mutation callbacks.
"""
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Optional

from pydantic import ValidationError

from models import (
    ActionCommand,
    CommandKind,
    EntitySnapshot,
    EventDraft,
    GoalDraft,
    NoteDraft,
    SideEffect,
    TaskDraft,
    normalize_subtasks,
)

logger = logging.getLogger(__name__)


@dataclass
class MutationCallbacks:
    """Host-side mutation hooks. Creates and updates get a full record, deletes get an id."""
    on_task_create: Optional[Callable[[dict], Any]] = None
    on_task_update: Optional[Callable[[dict], Any]] = None
    on_task_delete: Optional[Callable[[str], Any]] = None
    on_task_delete_all: Optional[Callable[[], Any]] = None
    on_task_delete_completed: Optional[Callable[[], Any]] = None
    on_event_create: Optional[Callable[[dict], Any]] = None
    on_event_update: Optional[Callable[[dict], Any]] = None
    on_event_delete: Optional[Callable[[str], Any]] = None
    on_note_create: Optional[Callable[[dict], Any]] = None
    on_goal_create: Optional[Callable[[dict], Any]] = None
    on_goal_update: Optional[Callable[[dict], Any]] = None
    on_goal_delete: Optional[Callable[[str], Any]] = None


@dataclass
class Resolution:
    entity: Optional[dict]
    candidates: list[dict] = field(default_factory=list)

    @property
    def ambiguous(self) -> bool:
        return self.entity is None and len(self.candidates) > 1


@dataclass
class ApplyOutcome:
    side_effects: list[SideEffect] = field(default_factory=list)
    clarifications: list[str] = field(default_factory=list)


# entity family -> (snapshot collection, reference field, draft model)
ENTITY_FAMILIES = {
    "task": ("tasks", "taskTitle", TaskDraft),
    "event": ("events", "eventTitle", EventDraft),
    "goal": ("goals", "goalTitle", GoalDraft),
}


def _normalize(value: Any) -> str:
    return str(value or "").strip().lower()


def find_matches(reference: str, entities: list[dict]) -> list[dict]:
    """
    Entities whose title contains the reference or is contained in it, ignoring case.
    Collection order is preserved. Blank references and blank titles never match.
    """
    ref = _normalize(reference)
    if not ref:
        return []
    matches = []
    for entity in entities:
        title = _normalize(entity.get("title"))
        if title and (ref in title or title in ref):
            matches.append(entity)
    return matches


def resolve_entity(reference: str, entities: list[dict]) -> Resolution:
    """
    Pick the entity a reference denotes.
    A single match wins. Among several, a unique exact title match wins; anything
    else is left unresolved with the candidates attached.
    """
    matches = find_matches(reference, entities)
    if len(matches) == 1:
        return Resolution(matches[0], matches)
    if len(matches) > 1:
        exact = [m for m in matches if _normalize(m.get("title")) == _normalize(reference)]
        if len(exact) == 1:
            return Resolution(exact[0], matches)
    return Resolution(None, matches)


def _callback(callbacks: MutationCallbacks, name: str) -> Optional[Callable]:
    callback = getattr(callbacks, name)
    if callback is None:
        logger.warning("No %s handler registered, skipping command", name)
    return callback


def _resolve(family: str, reference: Any, entities: list[dict], outcome: ApplyOutcome) -> Optional[dict]:
    resolution = resolve_entity(reference, entities)
    if resolution.entity is not None:
        return resolution.entity
    if resolution.ambiguous:
        titles = ", ".join(str(c.get("title")) for c in resolution.candidates)
        logger.warning("%s reference %r is ambiguous: %s", family, reference, titles)
        outcome.clarifications.append(
            f'I found several {family}s matching "{reference}": {titles}. Which one did you mean?'
        )
    else:
        logger.warning("No %s matches %r, skipping command", family, reference)
    return None


def _reference(family: str, payload: dict) -> Any:
    _, ref_field, _ = ENTITY_FAMILIES[family]
    return payload.get(ref_field) or payload.get("title")


def _field_keys(model, loc_key: Any) -> set:
    """Every input key (field name or camelCase alias) that feeds the field named in an error loc."""
    for name, info in model.model_fields.items():
        if loc_key in (name, info.alias):
            return {name, info.alias}
    return {loc_key}


def _build_record(model, item: Any, **overrides) -> Optional[dict]:
    """
    Validate one created item. A field the model got wrong (e.g. "estimatedTime": "1 hour")
    is dropped so its default applies; the item is only skipped when it has no usable title.
    """
    if not isinstance(item, dict):
        logger.warning("Skipping %s item that is not an object: %r", model.__name__, item)
        return None
    # Ids are always ours; nulls fall back to defaults
    data = {k: v for k, v in item.items() if k != "id" and v is not None}
    data.update(overrides)
    while True:
        try:
            return model.model_validate(data).to_record()
        except ValidationError as e:
            bad_keys = set()
            for error in e.errors():
                if error["loc"]:
                    bad_keys |= _field_keys(model, error["loc"][0])
            present = bad_keys & data.keys()
            if not present or ("title" in present and model.model_fields["title"].is_required()):
                logger.warning("Skipping invalid %s: %s", model.__name__, e)
                return None
            logger.warning("Dropping invalid %s fields %s", model.__name__, sorted(present))
            for key in present:
                del data[key]


def _create_all(family: str, payload: list, snapshot: EntitySnapshot,
                callbacks: MutationCallbacks, outcome: ApplyOutcome) -> None:
    callback = _callback(callbacks, f"on_{family}_create")
    if callback is None:
        return
    _, _, model = ENTITY_FAMILIES[family]
    overrides = {"completed": False} if family == "task" else {}
    for item in payload:
        record = _build_record(model, item, **overrides)
        if record is None:
            continue
        callback(record)
        outcome.side_effects.append(
            SideEffect(action=f"{family}_created", entity_id=record["id"], title=record["title"])
        )


def _update(family: str, payload: dict, snapshot: EntitySnapshot,
            callbacks: MutationCallbacks, outcome: ApplyOutcome) -> None:
    updates = payload.get("updates")
    if not isinstance(updates, dict):
        logger.warning("%s update has no updates object, skipping", family)
        return
    callback = _callback(callbacks, f"on_{family}_update")
    if callback is None:
        return
    collection, _, _ = ENTITY_FAMILIES[family]
    entity = _resolve(family, _reference(family, payload), getattr(snapshot, collection), outcome)
    if entity is None:
        return

    merged = {**entity, **updates}
    if "id" in entity:
        merged["id"] = entity["id"]
    if family == "task":
        added = merged.pop("addSubtasks", None)
        if added:
            merged["subtasks"] = list(entity.get("subtasks") or []) + normalize_subtasks(added)
    callback(merged)
    outcome.side_effects.append(
        SideEffect(action=f"{family}_updated", entity_id=merged.get("id"), title=merged.get("title"))
    )


def _delete(family: str, payload: dict, snapshot: EntitySnapshot,
            callbacks: MutationCallbacks, outcome: ApplyOutcome) -> None:
    callback = _callback(callbacks, f"on_{family}_delete")
    if callback is None:
        return
    collection, _, _ = ENTITY_FAMILIES[family]
    entity = _resolve(family, _reference(family, payload), getattr(snapshot, collection), outcome)
    if entity is None:
        return
    if "id" not in entity:
        logger.warning("%s %r has no id, skipping delete", family, entity.get("title"))
        return
    callback(entity["id"])
    outcome.side_effects.append(
        SideEffect(action=f"{family}_deleted", entity_id=entity["id"], title=entity.get("title"))
    )


def _gated(callback_name: str, action: str, payload: dict, snapshot: EntitySnapshot,
           callbacks: MutationCallbacks, outcome: ApplyOutcome) -> None:
    # Bulk deletes only run with an explicit "confirm": true
    if payload.get("confirm") is not True:
        logger.info("%s without confirm=true, ignoring", callback_name)
        return
    callback = _callback(callbacks, callback_name)
    if callback is None:
        return
    callback()
    outcome.side_effects.append(SideEffect(action=action))


def _create_note(payload: dict, snapshot: EntitySnapshot,
                 callbacks: MutationCallbacks, outcome: ApplyOutcome) -> None:
    callback = _callback(callbacks, "on_note_create")
    if callback is None:
        return
    record = _build_record(NoteDraft, payload)
    if record is None:
        return
    callback(record)
    outcome.side_effects.append(SideEffect(action="note_created", entity_id=record["id"], title=record["title"]))


_HANDLERS = {
    CommandKind.CREATE_TASKS: partial(_create_all, "task"),
    CommandKind.UPDATE_TASK: partial(_update, "task"),
    CommandKind.DELETE_TASK: partial(_delete, "task"),
    CommandKind.DELETE_ALL_TASKS: partial(_gated, "on_task_delete_all", "tasks_deleted_all"),
    CommandKind.DELETE_COMPLETED_TASKS: partial(_gated, "on_task_delete_completed", "tasks_deleted_completed"),
    CommandKind.CREATE_EVENTS: partial(_create_all, "event"),
    CommandKind.UPDATE_EVENT: partial(_update, "event"),
    CommandKind.DELETE_EVENT: partial(_delete, "event"),
    CommandKind.CREATE_GOALS: partial(_create_all, "goal"),
    CommandKind.UPDATE_GOAL: partial(_update, "goal"),
    CommandKind.DELETE_GOAL: partial(_delete, "goal"),
    CommandKind.CREATE_NOTE: _create_note,
}


def apply_commands(commands: list[ActionCommand], snapshot: EntitySnapshot,
                   callbacks: MutationCallbacks) -> ApplyOutcome:
    """Run each executable command against the snapshot, in response order."""
    outcome = ApplyOutcome()
    for command in commands:
        if command.duplicate:
            continue
        _HANDLERS[command.kind](command.payload, snapshot, callbacks, outcome)
    return outcome
