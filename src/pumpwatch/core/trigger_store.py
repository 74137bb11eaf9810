"""
Trigger group persistence.

Groups live in a small JSON file next to the database, not in it, so
wiping the database keeps the user's rules.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from .trigger_models import (
    TriggerCondition,
    TriggerGroup,
    TriggerOperator,
    TriggerType,
)

logger = logging.getLogger(__name__)


class TriggerStoreError(Exception):
    """Unknown trigger group or condition id."""
    pass


class TriggerGroupStore:
    """
    CRUD over trigger groups, saved to a JSON file after every change.

    Usage:
        store = TriggerGroupStore("triggers.json")
        store.load()
        group = store.add_group("Momentum", TriggerType.WATCH)
        store.add_condition(group.id, TriggerCondition(metric="volumeRate",
                                                       comparison=">", value=5))

    Pass ``path=None`` for an in-memory store.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._groups: dict[str, TriggerGroup] = {}

    @property
    def groups(self) -> list[TriggerGroup]:
        return list(self._groups.values())

    def enabled_groups(self) -> list[TriggerGroup]:
        return [g for g in self._groups.values() if g.enabled]

    def get_group(self, group_id: str) -> TriggerGroup:
        group = self._groups.get(group_id)
        if group is None:
            raise TriggerStoreError(f"Unknown trigger group: {group_id}")
        return group

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def load(self) -> int:
        """
        Load groups from the file. Returns the number loaded.

        A missing file is an empty store. Unreadable or invalid content is
        logged and also treated as empty.
        """
        self._groups = {}
        if self.path is None or not self.path.exists():
            return 0

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            items = raw.get("groups", []) if isinstance(raw, dict) else raw
            groups = [TriggerGroup.model_validate(item) for item in items]
        except (OSError, ValueError, TypeError, AttributeError, ValidationError) as e:
            logger.warning(f"Ignoring invalid trigger file {self.path}: {e}")
            return 0

        self._groups = {g.id: g for g in groups}
        logger.info(f"Loaded {len(groups)} trigger groups from {self.path}")
        return len(groups)

    def save(self) -> None:
        """Write all groups to the file (atomic replace)."""
        if self.path is None:
            return
        payload = {
            "groups": [
                g.model_dump(mode="json", by_alias=True) for g in self._groups.values()
            ]
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def _put(self, group: TriggerGroup) -> TriggerGroup:
        self._groups[group.id] = group
        self.save()
        return group

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    def add_group(
        self,
        name: str,
        type: TriggerType = TriggerType.WATCH,
        operator: TriggerOperator = TriggerOperator.AND,
        enabled: bool = True,
        conditions: tuple[TriggerCondition, ...] = (),
    ) -> TriggerGroup:
        group = TriggerGroup(
            name=name,
            type=type,
            operator=operator,
            enabled=enabled,
            conditions=tuple(conditions),
        )
        logger.info(f"Added trigger group '{name}' ({group.id})")
        return self._put(group)

    def remove_group(self, group_id: str) -> None:
        self.get_group(group_id)
        del self._groups[group_id]
        self.save()

    def update_group(self, group_id: str, **changes: Any) -> TriggerGroup:
        """Replace fields of a group (name, enabled, type, operator)."""
        group = self.get_group(group_id)
        changes.pop("id", None)
        updated = TriggerGroup.model_validate({**group.model_dump(), **changes})
        return self._put(updated)

    # -------------------------------------------------------------------------
    # Conditions
    # -------------------------------------------------------------------------

    def add_condition(self, group_id: str, condition: TriggerCondition) -> TriggerGroup:
        group = self.get_group(group_id)
        return self._put(group.model_copy(update={"conditions": group.conditions + (condition,)}))

    def remove_condition(self, group_id: str, condition_id: str) -> TriggerGroup:
        group = self.get_group(group_id)
        remaining = tuple(c for c in group.conditions if c.id != condition_id)
        if len(remaining) == len(group.conditions):
            raise TriggerStoreError(f"Unknown condition {condition_id} in group {group_id}")
        return self._put(group.model_copy(update={"conditions": remaining}))

    def update_condition(
        self, group_id: str, condition_id: str, **changes: Any
    ) -> TriggerGroup:
        """Replace fields of one condition (``value`` or ``threshold`` for the threshold)."""
        group = self.get_group(group_id)
        changes.pop("id", None)
        if "value" in changes:
            changes["threshold"] = changes.pop("value")

        conditions = []
        found = False
        for condition in group.conditions:
            if condition.id == condition_id:
                condition = TriggerCondition.model_validate(
                    {**condition.model_dump(), **changes}
                )
                found = True
            conditions.append(condition)
        if not found:
            raise TriggerStoreError(f"Unknown condition {condition_id} in group {group_id}")

        return self._put(group.model_copy(update={"conditions": tuple(conditions)}))
