"""
HashLinks Assembly -- Fold Tests

fold_assembly is the only code that turns operations into AssemblyState.
It is pure: same entries in, same state out.

Covers:
  - register creates state; ops before register are ignored
  - Order sensitivity: [add-action A, register, add-action B] keeps only B
  - A second register resets actions and blocks
  - add-action / add-block append in log order
  - update merges description and tags only when given
  - Every applied op moves `updated`
  - Inputs are never mutated
  - Incremental folding equals batch replay
"""

import json

from hashlinks.assembly_registry import ASSEMBLY_STATE, fold_assembly, state_json
from hashlinks.events import add_action_op, add_block_op, make_entry, register_op, update_op
from hashlinks.registry import replay
from hashlinks.types import AssemblyActionRef, AssemblyBlockRef


def entries_for(*ops):
    return [make_entry(seq, op) for seq, op in enumerate(ops, start=1)]


def build_incremental(entries):
    state = ASSEMBLY_STATE.initial()
    for entry in entries:
        state = fold_assembly(state, entry)
    return state


class TestRegister:
    def test_register_creates_state(self):
        [entry] = entries_for(register_op(name="a", version="1.0.0", description="demo", tags=["x"], author="me"))

        state = fold_assembly(None, entry)

        assert state.topic_id == "0.0.12345"
        assert state.name == "a"
        assert state.version == "1.0.0"
        assert state.description == "demo"
        assert state.tags == ("x",)
        assert state.author == "me"
        assert state.actions == ()
        assert state.blocks == ()
        assert state.created == entry.timestamp
        assert state.updated == entry.timestamp

    def test_ops_before_register_are_ignored(self):
        entries = entries_for(add_action_op("0.0.11111", "x"), add_block_op("0.0.22222"), update_op(description="d"))
        assert replay(ASSEMBLY_STATE, entries) is None

    def test_order_sensitivity(self):
        entries = entries_for(
            add_action_op("0.0.11111", "a"),
            register_op(),
            add_action_op("0.0.11112", "b"),
        )

        state = replay(ASSEMBLY_STATE, entries)

        assert state.actions == (AssemblyActionRef(reference="0.0.11112", alias="b"),)

    def test_second_register_resets_state(self):
        entries = entries_for(
            register_op(name="a", version="1.0.0"),
            add_action_op("0.0.11111", "x"),
            add_block_op("0.0.22222", actions={"x": "0.0.11111"}),
            register_op(name="a", version="2.0.0"),
        )

        state = replay(ASSEMBLY_STATE, entries)

        assert state.version == "2.0.0"
        assert state.actions == ()
        assert state.blocks == ()
        assert state.created == entries[3].timestamp


class TestOperations:
    def test_actions_and_blocks_append_in_order(self):
        entries = entries_for(
            register_op(),
            add_action_op("0.0.11111", "x", config={"max": 10}),
            add_action_op("0.0.11112", "y"),
            add_block_op("0.0.22222", actions={"x": "0.0.11111"}, children=["child"], attributes={"title": "t"}),
        )

        state = replay(ASSEMBLY_STATE, entries)

        assert [a.alias for a in state.actions] == ["x", "y"]
        assert state.actions[0].config == {"max": 10}
        assert state.blocks == (
            AssemblyBlockRef(
                reference="0.0.22222",
                actions={"x": "0.0.11111"},
                attributes={"title": "t"},
                children=("child",),
            ),
        )

    def test_update_merges_only_given_fields(self):
        entries = entries_for(
            register_op(description="before", tags=["a"]),
            update_op(description="after"),
            update_op(tags=["b", "c"]),
        )

        state = replay(ASSEMBLY_STATE, entries)

        assert state.description == "after"
        assert state.tags == ("b", "c")
        assert state.name == "test-assembly"

    def test_every_applied_op_moves_updated(self):
        entries = entries_for(register_op(), add_action_op("0.0.11111", "x"), update_op(description="d"))

        state = replay(ASSEMBLY_STATE, entries)

        assert state.created == entries[0].timestamp
        assert state.updated == entries[2].timestamp

    def test_unknown_operation_leaves_state(self):
        state = replay(ASSEMBLY_STATE, entries_for(register_op()))
        entry = make_entry(2, {"p": "hcs-12", "op": "template"})

        assert fold_assembly(state, entry) is state


class TestPurity:
    def test_fold_does_not_mutate_input(self):
        entries = entries_for(register_op(), add_action_op("0.0.11111", "x"))
        state = replay(ASSEMBLY_STATE, entries)
        before = state_json(state)

        fold_assembly(state, make_entry(3, add_action_op("0.0.11112", "y")))

        assert state_json(state) == before
        assert len(state.actions) == 1

    def test_incremental_equals_replay(self):
        entries = entries_for(
            register_op(name="a", tags=["t"]),
            add_action_op("0.0.11111", "x"),
            add_block_op("0.0.22222", actions={"x": "0.0.11111"}),
            update_op(description="d"),
            add_action_op("0.0.11112", "y"),
            register_op(name="a", version="1.1.0"),
            add_action_op("0.0.11113", "z"),
        )

        assert state_json(build_incremental(entries)) == state_json(replay(ASSEMBLY_STATE, entries))

    def test_replay_is_deterministic(self):
        entries = entries_for(
            register_op(),
            add_action_op("0.0.11111", "x"),
            add_block_op("0.0.22222", actions={"x": "0.0.11111"}),
        )
        first = state_json(replay(ASSEMBLY_STATE, entries))

        for _ in range(50):
            assert state_json(replay(ASSEMBLY_STATE, entries)) == first

    def test_state_serializes(self):
        entries = entries_for(register_op(), add_block_op("0.0.22222", children=["c"]))
        state = replay(ASSEMBLY_STATE, entries)

        data = json.loads(state_json(state))

        assert data["blocks"] == [{"reference": "0.0.22222", "children": ["c"]}]
        assert data["actions"] == []
