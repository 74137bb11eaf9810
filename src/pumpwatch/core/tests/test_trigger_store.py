"""
Tests for TriggerGroupStore and the trigger models.

These tests verify:
- Groups round-trip through the JSON file
- Edits produce new frozen objects
- Unknown ids raise TriggerStoreError
- An invalid file is treated as empty
"""
import json

import pytest
from pydantic import ValidationError

from pumpwatch.core import (
    Comparison,
    TriggerCondition,
    TriggerGroupStore,
    TriggerOperator,
    TriggerStoreError,
    TriggerType,
)


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "triggers.json"


@pytest.fixture
def store(store_path):
    return TriggerGroupStore(store_path)


class TestTriggerModels:
    """Tests for TriggerCondition / TriggerGroup."""

    def test_threshold_accepts_value_key(self):
        condition = TriggerCondition.model_validate(
            {"metric": "volumeRate", "comparison": ">", "value": 5, "unit": "SOL/min"}
        )
        assert condition.threshold == 5.0
        assert condition.comparison is Comparison.GT

    def test_conditions_are_frozen(self):
        condition = TriggerCondition(metric="volumeRate", comparison=">", value=5)
        with pytest.raises(ValidationError):
            condition.threshold = 10

    def test_ids_are_unique(self):
        a = TriggerCondition(metric="volumeRate")
        b = TriggerCondition(metric="volumeRate")
        assert a.id != b.id

    @pytest.mark.parametrize(
        "comparison,value,expected",
        [(">", 5, False), ("<", 5, False), ("=", 5, True), (">=", 5, True), ("<=", 4, False)],
    )
    def test_comparisons(self, comparison, value, expected):
        assert Comparison(comparison).apply(5.0, value) is expected


class TestTriggerGroupStore:
    """Tests for CRUD and persistence."""

    def test_round_trip_through_file(self, store, store_path):
        group = store.add_group("Momentum", TriggerType.WATCH, TriggerOperator.OR)
        store.add_condition(
            group.id, TriggerCondition(metric="volumeRate", comparison=">", value=5)
        )
        store.add_condition(group.id, TriggerCondition(metric="wildcardSearch", pattern="pepe*"))

        reloaded = TriggerGroupStore(store_path)
        assert reloaded.load() == 1

        loaded = reloaded.get_group(group.id)
        assert loaded == store.get_group(group.id)
        assert loaded.operator == TriggerOperator.OR
        assert [c.metric for c in loaded.conditions] == ["volumeRate", "wildcardSearch"]

    def test_file_uses_value_key(self, store, store_path):
        group = store.add_group("Momentum")
        store.add_condition(group.id, TriggerCondition(metric="buyCount", comparison=">=", value=3))

        raw = json.loads(store_path.read_text())
        condition = raw["groups"][0]["conditions"][0]
        assert condition["value"] == 3.0
        assert "threshold" not in condition

    def test_edits_replace_groups(self, store):
        group = store.add_group("Momentum")

        updated = store.update_group(group.id, enabled=False, name="Paused")

        assert group.enabled is True
        assert updated.enabled is False
        assert updated.name == "Paused"
        assert store.enabled_groups() == []

    def test_update_and_remove_condition(self, store):
        group = store.add_group("Momentum")
        condition = TriggerCondition(metric="volumeRate", comparison=">", value=5)
        store.add_condition(group.id, condition)

        updated = store.update_condition(group.id, condition.id, value=7, comparison="<")
        assert updated.conditions[0].threshold == 7.0
        assert updated.conditions[0].comparison is Comparison.LT
        assert updated.conditions[0].id == condition.id

        removed = store.remove_condition(group.id, condition.id)
        assert removed.conditions == ()

    def test_unknown_ids_raise(self, store):
        group = store.add_group("Momentum")

        with pytest.raises(TriggerStoreError):
            store.get_group("missing")
        with pytest.raises(TriggerStoreError):
            store.remove_group("missing")
        with pytest.raises(TriggerStoreError):
            store.remove_condition(group.id, "missing")
        with pytest.raises(TriggerStoreError):
            store.update_condition(group.id, "missing", value=1)

    def test_remove_group(self, store, store_path):
        group = store.add_group("Momentum")
        store.remove_group(group.id)

        assert store.groups == []
        assert TriggerGroupStore(store_path).load() == 0

    def test_invalid_file_is_empty(self, store_path):
        store_path.write_text("{not json")
        store = TriggerGroupStore(store_path)

        assert store.load() == 0
        assert store.groups == []

    def test_invalid_group_is_empty(self, store_path):
        store_path.write_text(json.dumps({"groups": [{"operator": "XOR"}]}))

        assert TriggerGroupStore(store_path).load() == 0

    def test_missing_file_and_memory_store(self, tmp_path):
        assert TriggerGroupStore(tmp_path / "absent.json").load() == 0

        memory = TriggerGroupStore()
        memory.add_group("Momentum")
        assert len(memory.groups) == 1
