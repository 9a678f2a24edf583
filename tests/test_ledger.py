import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect, BulkWriteError, OperationFailure

from app.connections.ledger import (
    ConnectionLedger,
    LedgerConflictError,
    LedgerStorageError,
    pair_key,
)
from app.connections.models import ActivityKind
from app.utils.pagination import PaginationParams

DINNER = ActivityKind.DINNER
EVENT = ActivityKind.EVENT


@pytest.fixture
def ledger(mongo) -> ConnectionLedger:
    return ConnectionLedger(mongo)


async def count_records(ledger: ConnectionLedger, query=None) -> int:
    return await ledger.collection.count_documents(query or {})


# ─────────────────────────────────────────────
# add_links
# ─────────────────────────────────────────────

async def test_add_then_get(ledger, user_ids):
    a, b, c, _ = user_ids
    dinner = ObjectId()

    written = await ledger.add_links(a, DINNER, dinner, [b, c])

    assert written == 2
    record = await ledger.get_connection(a, b)
    assert record is not None
    assert record.dinner_refs == [str(dinner)]
    assert record.event_refs == []
    assert record.members == sorted([str(a), str(b)])
    assert record.pair_key == pair_key(a, b)
    assert record.created_at is not None
    assert await ledger.get_connection(a, c) is not None
    # b et c ne sont pas reliés par cet appel
    assert await ledger.get_connection(b, c) is None


async def test_add_links_is_idempotent(ledger, user_ids):
    a, b, _, _ = user_ids
    dinner = ObjectId()

    await ledger.add_links(a, DINNER, dinner, [b])
    await ledger.add_links(a, DINNER, dinner, [b])
    await ledger.add_links(b, DINNER, dinner, [a])

    assert await count_records(ledger) == 1
    record = await ledger.get_connection(a, b)
    assert record.dinner_refs == [str(dinner)]


async def test_connection_lookup_is_commutative(ledger, user_ids):
    a, b, _, _ = user_ids
    await ledger.add_links(a, EVENT, ObjectId(), [b])

    forward = await ledger.get_connection(a, b)
    backward = await ledger.get_connection(b, a)

    assert forward is not None
    assert forward.id == backward.id


async def test_subject_is_excluded_from_other_users(ledger, user_ids):
    a, b, _, _ = user_ids

    assert await ledger.add_links(a, DINNER, ObjectId(), [a]) == 0
    assert await ledger.add_links(a, DINNER, ObjectId(), []) == 0
    assert await count_records(ledger) == 0

    assert await ledger.add_links(a, DINNER, ObjectId(), [a, b, str(b)]) == 1
    assert await count_records(ledger) == 1
    assert await ledger.get_connection(a, a) is None


async def test_references_accumulate_per_kind(ledger, user_ids):
    a, b, _, _ = user_ids
    first, second, event = ObjectId(), ObjectId(), ObjectId()

    await ledger.add_links(a, DINNER, first, [b])
    await ledger.add_links(b, DINNER, second, [a])
    await ledger.add_links(a, EVENT, event, [b])

    record = await ledger.get_connection(a, b)
    assert sorted(record.dinner_refs) == sorted([str(first), str(second)])
    assert record.event_refs == [str(event)]


# ─────────────────────────────────────────────
# remove_links
# ─────────────────────────────────────────────

async def test_remove_last_reference_deletes_record(ledger, user_ids):
    a, b, c, _ = user_ids
    dinner = ObjectId()
    await ledger.add_links(a, DINNER, dinner, [b, c])

    pulled, pruned = await ledger.remove_links(a, DINNER, dinner)

    assert (pulled, pruned) == (2, 2)
    assert await ledger.get_connection(a, b) is None
    assert await ledger.get_connection(a, c) is None
    assert await count_records(ledger) == 0


async def test_remove_links_is_idempotent(ledger, user_ids):
    a, b, _, _ = user_ids
    dinner = ObjectId()
    await ledger.add_links(a, DINNER, dinner, [b])

    await ledger.remove_links(a, DINNER, dinner)
    assert await ledger.remove_links(a, DINNER, dinner) == (0, 0)


async def test_remove_keeps_links_between_other_participants(ledger, user_ids):
    a, b, c, _ = user_ids
    dinner = ObjectId()
    # c rejoint un dîner où se trouvent déjà a et b
    await ledger.add_links(b, DINNER, dinner, [a])
    await ledger.add_links(c, DINNER, dinner, [a, b])

    await ledger.remove_links(a, DINNER, dinner)

    assert await ledger.get_connection(a, b) is None
    assert await ledger.get_connection(a, c) is None
    record = await ledger.get_connection(b, c)
    assert record.dinner_refs == [str(dinner)]


async def test_mixed_kinds_survive_partial_removal(ledger, user_ids):
    a, b, _, _ = user_ids
    dinner, event = ObjectId(), ObjectId()
    await ledger.add_links(a, DINNER, dinner, [b])
    await ledger.add_links(a, EVENT, event, [b])

    pulled, pruned = await ledger.remove_links(a, DINNER, dinner)

    assert (pulled, pruned) == (1, 0)
    record = await ledger.get_connection(a, b)
    assert record.dinner_refs == []
    assert record.event_refs == [str(event)]


async def test_refill_between_pull_and_prune_survives(ledger, user_ids):
    a, b, _, _ = user_ids
    old_dinner, new_dinner = ObjectId(), ObjectId()
    await ledger.add_links(a, DINNER, old_dinner, [b])

    await ledger._pull_reference(a, DINNER, old_dinner)
    await ledger.add_links(b, DINNER, new_dinner, [a])
    pruned = await ledger._prune_empty(a)

    assert pruned == 0
    record = await ledger.get_connection(a, b)
    assert record.dinner_refs == [str(new_dinner)]


# ─────────────────────────────────────────────
# Lectures
# ─────────────────────────────────────────────

async def test_connection_statuses(ledger, user_ids):
    a, b, c, d = user_ids
    await ledger.add_links(a, EVENT, ObjectId(), [b])

    statuses = await ledger.get_connection_statuses(a, [b, c, d, a])

    assert statuses == {str(b): True, str(c): False, str(d): False, str(a): False}
    assert list(statuses) == [str(b), str(c), str(d), str(a)]


async def test_connection_statuses_without_candidates(ledger, user_ids):
    a = user_ids[0]
    assert await ledger.get_connection_statuses(a, []) == {}
    assert await ledger.get_connection_statuses(a, [a]) == {str(a): False}


async def test_detailed_connection_resolves_activities(ledger, mongo, user_ids):
    a, b, _, _ = user_ids
    dinner = await mongo.dinners.insert_one({"title": "Dîner du jeudi", "location": "Lyon", "secret": "x"})
    event = await mongo.events.insert_one({"title": "Concert", "location": "Paris"})
    await ledger.add_links(a, DINNER, dinner.inserted_id, [b])
    await ledger.add_links(a, EVENT, event.inserted_id, [b])

    detailed = await ledger.get_detailed_connection(b, a)

    assert [d.title for d in detailed.dinners] == ["Dîner du jeudi"]
    assert [e.title for e in detailed.events] == ["Concert"]
    assert detailed.dinners[0].id == str(dinner.inserted_id)
    assert await ledger.get_detailed_connection(a, ObjectId()) is None


async def test_list_connections_includes_counterpart_profile(ledger, mongo):
    a = (await mongo.users.insert_one({"first_name": "Alice", "email": "a@example.com"})).inserted_id
    b = (await mongo.users.insert_one({"first_name": "Bob", "email": "b@example.com"})).inserted_id
    c = (await mongo.users.insert_one({"first_name": "Chloé", "email": "c@example.com"})).inserted_id
    await ledger.add_links(a, DINNER, ObjectId(), [b, c])

    items, pagination = await ledger.list_connections(a, PaginationParams(page=1, limit=1))

    assert pagination.total_records == 2
    assert pagination.total_pages == 2
    assert len(items) == 1
    assert items[0].user["first_name"] in {"Bob", "Chloé"}
    assert "email" not in items[0].user


# ─────────────────────────────────────────────
# Erreurs de stockage
# ─────────────────────────────────────────────

class FlakyCollection:
    """Enveloppe une collection : bulk_write lève ``errors`` avant de déléguer."""

    def __init__(self, collection, errors):
        self._collection = collection
        self._errors = list(errors)
        self.bulk_calls = 0

    async def bulk_write(self, operations, **kwargs):
        self.bulk_calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return await self._collection.bulk_write(operations, **kwargs)

    def __getattr__(self, name):
        return getattr(self._collection, name)


def duplicate_key_error() -> BulkWriteError:
    return BulkWriteError({"writeErrors": [{"index": 0, "code": 11000, "errmsg": "E11000 duplicate key"}]})


async def test_duplicate_pair_is_retried_outside_transaction(ledger, user_ids):
    a, b, _, _ = user_ids
    flaky = FlakyCollection(ledger.collection, [duplicate_key_error()])
    ledger.collection = flaky

    assert await ledger.add_links(a, DINNER, ObjectId(), [b]) == 1
    assert flaky.bulk_calls == 2
    assert await ledger.get_connection(a, b) is not None


async def test_duplicate_pair_inside_transaction_propagates(ledger, user_ids):
    a, b, _, _ = user_ids
    flaky = FlakyCollection(ledger.collection, [duplicate_key_error()])
    ledger.collection = flaky

    with pytest.raises(LedgerConflictError):
        await ledger.add_links(a, DINNER, ObjectId(), [b], session=object())
    assert flaky.bulk_calls == 1


async def test_repeated_conflict_gives_up(ledger, user_ids):
    a, b, _, _ = user_ids
    ledger.collection = FlakyCollection(ledger.collection, [duplicate_key_error(), duplicate_key_error()])

    with pytest.raises(LedgerConflictError):
        await ledger.add_links(a, DINNER, ObjectId(), [b])


async def test_transient_failure_is_storage_error(ledger, user_ids):
    a, b, _, _ = user_ids
    ledger.collection = FlakyCollection(ledger.collection, [AutoReconnect("connexion perdue")])

    with pytest.raises(LedgerStorageError):
        await ledger.add_links(a, DINNER, ObjectId(), [b])


async def test_other_failures_are_not_wrapped(ledger, user_ids):
    a, b, _, _ = user_ids
    ledger.collection = FlakyCollection(ledger.collection, [OperationFailure("refusé", code=13)])

    with pytest.raises(OperationFailure):
        await ledger.add_links(a, DINNER, ObjectId(), [b])


async def test_other_bulk_write_errors_are_not_conflicts(ledger, user_ids):
    a, b, _, _ = user_ids
    error = BulkWriteError({"writeErrors": [{"index": 0, "code": 121, "errmsg": "Document failed validation"}]})
    flaky = FlakyCollection(ledger.collection, [error])
    ledger.collection = flaky

    with pytest.raises(BulkWriteError) as exc_info:
        await ledger.add_links(a, DINNER, ObjectId(), [b])
    assert exc_info.value is error
    assert flaky.bulk_calls == 1
