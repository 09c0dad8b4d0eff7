"""Tests for the sync engine.

Tests:
- First sync and revision numbering
- Last-writer-wins across syncs
- Revision guard (stale, matching, lost race)
- Write ordering and batching
- Failure semantics (batch failure, audit gap)
- Read-only fetch
"""

import pytest

from ledgersync.audit import AuditRecorder
from ledgersync.errors import AuditWriteError, RevisionConflictError, StorageError
from ledgersync.ids import workspace_to_id
from ledgersync.storage import (
    APP_STATES_TABLE,
    AUDIT_EVENTS_TABLE,
    CARDS_TABLE,
    CATEGORIES_TABLE,
    INSTALLMENT_PLANS_TABLE,
    TRANSACTIONS_TABLE,
    WORKSPACES_TABLE,
)
from ledgersync.sync import SyncEngine
from ledgersync.testing import InMemoryStore

WORKSPACE = "home"


@pytest.fixture
def engine(store, audit, clock):
    return SyncEngine(store, audit, clock=clock)


def _stored_row(store):
    rows = store.tables[APP_STATES_TABLE]
    assert len(rows) == 1
    return rows[0]


class TestFirstSync:
    @pytest.mark.asyncio
    async def test_creates_state_at_revision_one(self, engine, store, actor, state_factory, tx_factory):
        outcome = await engine.sync(WORKSPACE, state_factory(transactions=[tx_factory()]), actor=actor)
        assert outcome.revision == 1
        assert outcome.server_updated_at == "2025-04-01T12:00:00+00:00"
        assert outcome.state.updated_at == outcome.server_updated_at

        row = _stored_row(store)
        assert row["workspace_id"] == workspace_to_id(WORKSPACE)
        assert row["revision"] == 1
        assert row["state"]["transactions"][0]["id"] == "tx-1"
        assert store.tables[WORKSPACES_TABLE][0]["key"] == WORKSPACE
        assert len(store.tables[TRANSACTIONS_TABLE]) == 1

    @pytest.mark.asyncio
    async def test_write_order_parents_first(self, engine, store, actor, state_factory, tx_factory):
        state = state_factory(
            cards=[{"id": "card-1", "name": "Visa"}],
            transactions=[
                tx_factory(cardId="card-1", paymentMethod="credit",
                           installment={"groupId": "g", "number": 1, "total": 2}),
            ],
        )
        await engine.sync(WORKSPACE, state, actor=actor)
        writes = [(op, table) for op, table, _ in store.calls if op != "select"]
        assert writes == [
            ("upsert", WORKSPACES_TABLE),
            ("upsert", CARDS_TABLE),
            ("upsert", CATEGORIES_TABLE),
            ("upsert", INSTALLMENT_PLANS_TABLE),
            ("upsert", TRANSACTIONS_TABLE),
            ("upsert", APP_STATES_TABLE),
            ("insert", AUDIT_EVENTS_TABLE),
        ]

    @pytest.mark.asyncio
    async def test_audit_event_summarizes_states(self, engine, store, actor, state_factory, tx_factory):
        await engine.sync(WORKSPACE, state_factory(transactions=[tx_factory()]), actor=actor)
        event = store.tables[AUDIT_EVENTS_TABLE][0]
        assert event["entity_type"] == "app_state"
        assert event["entity_id"] == workspace_to_id(WORKSPACE)
        assert event["action"] == "sync"
        assert event["actor_device_id"] == actor.device_id
        assert event["actor_user_id"] == actor.user_id
        assert event["before"] is None
        assert event["after"]["revision"] == 1
        assert event["after"]["counts"]["transactions"] == 1


class TestMergeAcrossSyncs:
    @pytest.mark.asyncio
    async def test_newer_item_wins_and_new_item_added(self, engine, store, actor, state_factory, tx_factory):
        await engine.sync(
            WORKSPACE,
            state_factory(transactions=[tx_factory("tx-1", amount=100, updatedAt="2025-03-01T00:00:00Z")]),
            actor=actor,
        )
        outcome = await engine.sync(
            WORKSPACE,
            state_factory(
                transactions=[
                    tx_factory("tx-1", amount=150, updatedAt="2025-03-02T00:00:00Z"),
                    tx_factory("tx-2"),
                ]
            ),
            actor=actor,
        )
        by_id = {tx.id: tx for tx in outcome.state.transactions}
        assert by_id["tx-1"].amount == 150
        assert "tx-2" in by_id
        assert outcome.revision == 2
        assert len(store.tables[TRANSACTIONS_TABLE]) == 2

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, engine, store, actor, state_factory, tx_factory):
        state = state_factory(transactions=[tx_factory("tx-1"), tx_factory("tx-2")])
        first = await engine.sync(WORKSPACE, state, actor=actor)
        second = await engine.sync(WORKSPACE, first.state, actor=actor)
        first_wire, second_wire = first.state.to_wire(), second.state.to_wire()
        first_wire.pop("updatedAt")
        second_wire.pop("updatedAt")
        assert second_wire == first_wire
        assert len(store.tables[TRANSACTIONS_TABLE]) == 2

    @pytest.mark.asyncio
    async def test_untimestamped_delete_is_stable(self, engine, store, actor, state_factory, tx_factory):
        raw = tx_factory("tx-1", deleted=True, createdAt=None, updatedAt=None)
        first = await engine.sync(WORKSPACE, state_factory(transactions=[raw]), actor=actor)
        row_before = dict(store.tables[TRANSACTIONS_TABLE][0])

        second = await engine.sync(WORKSPACE, state_factory(transactions=[raw]), actor=actor)
        assert second.state.transactions[0].deleted_at == first.state.transactions[0].deleted_at
        assert store.tables[TRANSACTIONS_TABLE][0]["deleted_at"] == row_before["deleted_at"]
        assert row_before["deleted_at"] is not None


class TestRevisionGuard:
    @pytest.mark.asyncio
    async def test_stale_revision_rejected_without_writes(self, engine, store, actor, state_factory, tx_factory):
        first = await engine.sync(WORKSPACE, state_factory(), actor=actor)
        before = _stored_row(store)
        calls_before = len(store.calls)

        with pytest.raises(RevisionConflictError) as exc_info:
            await engine.sync(
                WORKSPACE,
                state_factory(transactions=[tx_factory()]),
                actor=actor,
                revision=first.revision - 1,
            )

        assert exc_info.value.current_revision == first.revision
        assert exc_info.value.server_updated_at == first.server_updated_at
        assert _stored_row(store) == before
        assert [op for op, _, _ in store.calls[calls_before:]] == ["select"]

    @pytest.mark.asyncio
    async def test_matching_revision_uses_compare_and_set(self, engine, store, actor, state_factory):
        first = await engine.sync(WORKSPACE, state_factory(), actor=actor)
        second = await engine.sync(WORKSPACE, state_factory(), actor=actor, revision=first.revision)
        assert second.revision == first.revision + 1
        assert ("update", APP_STATES_TABLE, 1) in store.calls
        assert _stored_row(store)["revision"] == 2

    @pytest.mark.asyncio
    async def test_first_sync_with_revision_zero_inserts(self, engine, store, actor, state_factory):
        outcome = await engine.sync(WORKSPACE, state_factory(), actor=actor, revision=0)
        assert outcome.revision == 1
        assert ("insert", APP_STATES_TABLE, 1) in store.calls

    @pytest.mark.asyncio
    async def test_lost_race_reports_fresh_revision(self, actor, clock, state_factory):
        class RacingStore(InMemoryStore):
            """Another writer commits between our read and our compare-and-set."""

            async def update(self, table, values, match):
                if table == APP_STATES_TABLE:
                    for row in self.tables[APP_STATES_TABLE]:
                        row["revision"] += 1
                return await super().update(table, values, match)

        store = RacingStore()
        engine = SyncEngine(store, AuditRecorder(store), clock=clock)
        first = await engine.sync(WORKSPACE, state_factory(), actor=actor)

        with pytest.raises(RevisionConflictError) as exc_info:
            await engine.sync(WORKSPACE, state_factory(), actor=actor, revision=first.revision)
        assert exc_info.value.current_revision == first.revision + 1
        assert len(store.tables[AUDIT_EVENTS_TABLE]) == 1

    @pytest.mark.asyncio
    async def test_sequential_stale_scenario(self, engine, actor, state_factory, tx_factory):
        """Second caller still holding the previous base gets a 409 with the new revision."""
        await engine.sync(WORKSPACE, state_factory(), actor=actor)
        latest = await engine.sync(WORKSPACE, state_factory(transactions=[tx_factory()]), actor=actor)

        with pytest.raises(RevisionConflictError) as exc_info:
            await engine.sync(WORKSPACE, state_factory(), actor=actor, revision=latest.revision - 1)
        assert exc_info.value.current_revision == latest.revision

        stored = await engine.fetch(WORKSPACE)
        assert stored.revision == latest.revision
        assert [tx.id for tx in stored.state.transactions] == ["tx-1"]


class TestBatchingAndFailures:
    @pytest.mark.asyncio
    async def test_rows_upserted_in_bounded_batches(self, store, audit, actor, clock, state_factory, tx_factory):
        engine = SyncEngine(store, audit, batch_size=2, clock=clock)
        state = state_factory(transactions=[tx_factory(f"tx-{i}") for i in range(5)])
        await engine.sync(WORKSPACE, state, actor=actor)
        batches = [n for op, table, n in store.calls if op == "upsert" and table == TRANSACTIONS_TABLE]
        assert batches == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_failed_batch_aborts_before_revision_moves(self, engine, store, actor, state_factory, tx_factory):
        await engine.sync(WORKSPACE, state_factory(), actor=actor)
        store.fail_next("upsert", TRANSACTIONS_TABLE)

        with pytest.raises(StorageError):
            await engine.sync(WORKSPACE, state_factory(transactions=[tx_factory()]), actor=actor)

        row = _stored_row(store)
        assert row["revision"] == 1
        assert row["state"]["transactions"] == []
        assert len(store.tables[AUDIT_EVENTS_TABLE]) == 1

    @pytest.mark.asyncio
    async def test_audit_failure_surfaces_after_commit(self, engine, store, actor, state_factory):
        store.fail_next("insert", AUDIT_EVENTS_TABLE)
        with pytest.raises(AuditWriteError):
            await engine.sync(WORKSPACE, state_factory(), actor=actor)
        # The state change is durable even though the request failed.
        assert _stored_row(store)["revision"] == 1


class TestFetch:
    @pytest.mark.asyncio
    async def test_none_before_first_sync(self, engine):
        assert await engine.fetch(WORKSPACE) is None

    @pytest.mark.asyncio
    async def test_returns_state_and_revision_without_audit(self, engine, store, actor, state_factory):
        outcome = await engine.sync(WORKSPACE, state_factory(categories=["Food"]), actor=actor)
        audit_rows = len(store.tables[AUDIT_EVENTS_TABLE])

        stored = await engine.fetch(WORKSPACE)
        assert stored.revision == outcome.revision
        assert stored.updated_at == outcome.server_updated_at
        assert stored.state.categories == ["Food"]
        assert len(store.tables[AUDIT_EVENTS_TABLE]) == audit_rows

    @pytest.mark.asyncio
    async def test_invalid_stored_state_is_storage_error(self, engine, store):
        store.tables[APP_STATES_TABLE].append(
            {"workspace_id": workspace_to_id(WORKSPACE), "state": {"transactions": [{"id": ""}]}, "revision": 3}
        )
        with pytest.raises(StorageError, match="invalid"):
            await engine.fetch(WORKSPACE)
