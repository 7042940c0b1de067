"""
HashLinks Registry -- Replay and Sync Tests

The generic registry owns one topic's entries, cursor and projected state.

Covers:
  - Detached mode: local monotonic ids, no sync
  - register(): validate, append, insert; nothing inserted on append failure
  - sync(): idempotence, resume from cursor, paging, cursor rules
  - Undecodable / foreign / invalid messages are skipped
  - An entry arriving behind one already folded triggers a refold in log order
  - list_entries / get_entry / get_latest_entry
"""

import json

import pytest

from hashlinks.errors import SyncError, TransportError, ValidationError
from hashlinks.events import add_action_op, register_op, update_op
from hashlinks.messages import parse_assembly_message
from hashlinks.registry import Projection, Registry
from hashlinks.transport import MemoryTransport
from hashlinks.types import RegistryType

TOPIC = "0.0.12345"


def fold_order(seen, entry):
    return seen + [entry.sequence_number]


FOLD_ORDER = Projection(initial=list, fold=fold_order)


def make_registry(transport=None, topic_id=TOPIC, **kwargs):
    return Registry(
        RegistryType.ASSEMBLY,
        topic_id=topic_id,
        transport=transport,
        projection=FOLD_ORDER,
        parser=parse_assembly_message,
        **kwargs,
    )


# ============================================================================
# Detached
# ============================================================================


class TestDetachedRegistry:
    @pytest.mark.asyncio
    async def test_ids_are_monotonic(self):
        reg = make_registry(topic_id=None)

        ids = [
            await reg.register(register_op()),
            await reg.register(add_action_op("0.0.11111", "x")),
            await reg.register(update_op(description="d")),
        ]

        assert ids == ["1", "2", "3"]
        assert not reg.attached
        assert reg.state == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_sync_is_noop(self):
        reg = make_registry(topic_id=None)
        assert await reg.sync() == 0
        assert reg.cursor is None

    @pytest.mark.asyncio
    async def test_latest_entry_is_last_local(self):
        reg = make_registry(topic_id=None)
        await reg.register(register_op())
        await reg.register(add_action_op("0.0.11111", "x"))

        latest = await reg.get_latest_entry()
        assert latest.id == "2"
        assert latest.op == "add-action"

    @pytest.mark.asyncio
    async def test_missing_entry_is_none(self):
        reg = make_registry(topic_id=None)
        assert await reg.get_entry("42") is None


# ============================================================================
# Register
# ============================================================================


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_appends_then_inserts(self, transport):
        reg = make_registry(transport)

        entry_id = await reg.register(register_op(name="a"))

        assert entry_id == "1"
        assert len(transport.topics[TOPIC]) == 1
        entry = await reg.get_entry("1")
        assert entry.timestamp == "2024-01-01T00:00:00.000000Z"
        assert entry.submitter == "0.0.1001"
        assert entry.data.name == "a"

    @pytest.mark.asyncio
    async def test_failed_append_leaves_no_entry(self, transport):
        transport.failing_appends.add(TOPIC)
        reg = make_registry(transport)

        with pytest.raises(TransportError):
            await reg.register(register_op())

        assert len(reg) == 0
        assert reg.state == []

    @pytest.mark.asyncio
    async def test_wrong_protocol_rejected_before_append(self, transport):
        reg = make_registry(transport)

        with pytest.raises(ValidationError) as exc:
            await reg.register({"p": "hcs-2", "op": "register", "name": "a", "version": "1.0.0"})

        assert exc.value.field == "p"
        assert TOPIC not in transport.topics

    @pytest.mark.asyncio
    async def test_unknown_operation_rejected(self, transport):
        reg = make_registry(transport)

        with pytest.raises(ValidationError) as exc:
            await reg.register({"p": "hcs-12", "op": "delete"})

        assert exc.value.field == "op"

    @pytest.mark.asyncio
    async def test_non_object_payload_rejected(self):
        reg = make_registry(topic_id=None)

        with pytest.raises(ValidationError, match="non-null object"):
            await reg.register(None)


# ============================================================================
# Sync
# ============================================================================


def publish(transport, *messages, topic_id=TOPIC):
    for message in messages:
        transport.append_raw(topic_id, message.to_json())


class TestSync:
    @pytest.mark.asyncio
    async def test_sync_reads_every_message(self, transport):
        publish(transport, register_op(), add_action_op("0.0.11111", "x"), update_op(description="d"))
        reg = make_registry(transport)

        assert await reg.sync() == 3
        assert reg.state == [1, 2, 3]
        assert reg.cursor == "2024-01-01T00:00:02.000000Z"

    @pytest.mark.asyncio
    async def test_sync_is_idempotent(self, transport):
        publish(transport, register_op(), add_action_op("0.0.11111", "x"))
        reg = make_registry(transport)
        await reg.sync()
        state, cursor, count = list(reg.state), reg.cursor, len(reg)

        assert await reg.sync() == 0
        assert reg.state == state
        assert reg.cursor == cursor
        assert len(reg) == count

    @pytest.mark.asyncio
    async def test_sync_resumes_from_cursor(self, transport):
        publish(transport, register_op(), add_action_op("0.0.11111", "x"))
        reg = make_registry(transport)
        await reg.sync()

        publish(transport, add_action_op("0.0.11112", "y"), update_op(tags=["a"]))

        assert await reg.sync() == 2
        assert reg.state == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_sync_pages_through_long_topics(self, transport):
        publish(transport, register_op(), *[add_action_op("0.0.11111", f"a{i}") for i in range(4)])
        reg = make_registry(transport, page_size=2)

        assert await reg.sync() == 5
        assert reg.state == [1, 2, 3, 4, 5]
        assert transport.read_counts[TOPIC] > 1

    @pytest.mark.asyncio
    async def test_full_page_of_foreign_messages_does_not_end_sync(self, transport):
        transport.append_raw(TOPIC, json.dumps({"p": "hcs-2", "op": "register"}))
        transport.append_raw(TOPIC, json.dumps({"p": "hcs-2", "op": "register"}))
        publish(transport, register_op(), add_action_op("0.0.11111", "x"))
        reg = make_registry(transport, page_size=2)

        assert await reg.sync() == 2
        assert reg.state == [3, 4]

    @pytest.mark.asyncio
    async def test_full_page_of_own_appends_does_not_end_sync(self, transport):
        reg = make_registry(transport, page_size=2)
        await reg.register(register_op())
        await reg.register(add_action_op("0.0.11111", "x"))
        publish(transport, add_action_op("0.0.11112", "y"))

        entry = await reg.get_entry("3")

        assert entry is not None
        assert entry.data.alias == "y"
        assert reg.state == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_page_limit_warns_and_resumes(self, transport, caplog):
        publish(transport, register_op(), *[add_action_op("0.0.11111", f"a{i}") for i in range(4)])
        reg = make_registry(transport, page_size=2, max_pages=1)

        assert await reg.sync() == 2
        assert "may be truncated" in caplog.text

        await reg.sync()
        assert reg.state == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_unusable_messages_are_skipped(self, transport):
        transport.append_raw(TOPIC, "not json{")
        transport.append_raw(TOPIC, json.dumps({"p": "hcs-2", "op": "register", "t_id": "0.0.1"}))
        transport.append_raw(TOPIC, json.dumps([1, 2, 3]))
        transport.append_raw(TOPIC, json.dumps({"p": "hcs-12", "op": "add-action", "t_id": "0.0.1"}))
        transport.append_raw(TOPIC, register_op().to_json())

        reg = make_registry(transport)

        assert await reg.sync() == 1
        assert [e.id for e in reg.entries] == ["5"]
        assert reg.cursor == "2024-01-01T00:00:04.000000Z"

    @pytest.mark.asyncio
    async def test_empty_topic_sets_cursor_once(self):
        transport = MemoryTransport()
        reg = make_registry(transport)

        await reg.sync()
        first = reg.cursor
        assert first is not None

        await reg.sync()
        assert reg.cursor == first

    @pytest.mark.asyncio
    async def test_transport_failure_raises_sync_error(self, transport):
        transport.failing_reads.add(TOPIC)
        reg = make_registry(transport)

        with pytest.raises(SyncError) as exc:
            await reg.sync()

        assert isinstance(exc.value, TransportError)
        assert exc.value.topic_id == TOPIC
        assert TOPIC in str(exc.value)

    @pytest.mark.asyncio
    async def test_late_entry_refolds_in_log_order(self, transport):
        publish(transport, register_op())
        reg = make_registry(transport)
        await reg.sync()

        # Another writer lands seq 2 before our own append gets seq 3
        publish(transport, add_action_op("0.0.11111", "theirs"))
        await reg.register(add_action_op("0.0.11112", "ours"))
        assert reg.state == [1, 3]

        await reg.sync()
        assert reg.state == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_clear_cache_then_sync_rebuilds(self, transport):
        publish(transport, register_op(), add_action_op("0.0.11111", "x"))
        reg = make_registry(transport)
        await reg.sync()

        reg.clear_cache()
        assert len(reg) == 0
        assert reg.cursor is None
        assert reg.state == []

        await reg.sync()
        assert reg.state == [1, 2]


# ============================================================================
# Queries
# ============================================================================


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_entries_filters(self, transport):
        transport.append_raw(TOPIC, register_op().to_json(), payer="0.0.2001")
        transport.append_raw(TOPIC, add_action_op("0.0.11111", "x").to_json(), payer="0.0.2002")
        transport.append_raw(TOPIC, update_op(description="d").to_json(), payer="0.0.2001")
        reg = make_registry(transport)

        by_submitter = await reg.list_entries(submitter="0.0.2001")
        assert [e.id for e in by_submitter] == ["1", "3"]

        after = await reg.list_entries(after="2024-01-01T00:00:01Z")
        assert [e.id for e in after] == ["2", "3"]

        before = await reg.list_entries(before="2024-01-01T00:00:01Z")
        assert [e.id for e in before] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_get_entry_syncs_on_miss(self, transport):
        publish(transport, register_op())
        reg = make_registry(transport)

        entry = await reg.get_entry("1")

        assert entry is not None
        assert reg.sync_count == 1
        assert await reg.get_entry("99") is None

    @pytest.mark.asyncio
    async def test_latest_entry_reads_transport(self, transport):
        publish(transport, register_op(), add_action_op("0.0.11111", "x"))
        reg = make_registry(transport)

        latest = await reg.get_latest_entry()

        assert latest.sequence_number == 2
        assert transport.latest_counts[TOPIC] == 1
        assert len(reg) == 0

    @pytest.mark.asyncio
    async def test_latest_entry_foreign_message_is_none(self, transport):
        publish(transport, register_op())
        transport.append_raw(TOPIC, json.dumps({"p": "hcs-2", "op": "register"}))
        reg = make_registry(transport)

        assert await reg.get_latest_entry() is None

    @pytest.mark.asyncio
    async def test_topic_memo_and_stats(self, transport):
        reg = make_registry(transport, topic_id=None)
        topic_id = await reg.create_topic()

        assert reg.attached
        assert transport.memos[topic_id] == "hcs-12:1:60:2"

        await reg.register(register_op())
        stats = reg.get_stats()
        assert stats.entry_count == 1
        assert stats.topic_id == topic_id
        assert stats.registry_type == "ASSEMBLY"

        config = reg.get_config()
        assert config.indexed is True
        assert config.memo == "hcs-12:1:60:2"
