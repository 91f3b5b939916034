"""웹훅 처리 기록 저장소 테스트"""
import pytest

from database_helper import DatabaseHelper
from services.event_ledger import InMemoryEventLedger


@pytest.mark.asyncio
async def test_processed_event_is_remembered():
    ledger = InMemoryEventLedger()

    assert await ledger.has_processed_webhook_event("subscription", "evt_1") is False
    await ledger.record_webhook_event("subscription", "evt_1", "processed")

    assert await ledger.has_processed_webhook_event("subscription", "evt_1") is True
    assert await ledger.has_processed_webhook_event("billing", "evt_1") is False


@pytest.mark.asyncio
async def test_non_processed_status_is_not_duplicate():
    ledger = InMemoryEventLedger()
    await ledger.record_webhook_event("subscription", "evt_1", "failed")

    assert await ledger.has_processed_webhook_event("subscription", "evt_1") is False


@pytest.mark.asyncio
async def test_oldest_entries_are_evicted():
    ledger = InMemoryEventLedger(max_size=2)

    for event_id in ("evt_1", "evt_2", "evt_3"):
        await ledger.record_webhook_event("subscription", event_id, "processed")

    assert len(ledger) == 2
    assert await ledger.has_processed_webhook_event("subscription", "evt_1") is False
    assert await ledger.has_processed_webhook_event("subscription", "evt_3") is True


@pytest.mark.asyncio
async def test_empty_event_id_is_ignored():
    ledger = InMemoryEventLedger()

    assert await ledger.record_webhook_event("subscription", "", "processed") is False
    assert await ledger.has_processed_webhook_event("subscription", "") is False
    assert len(ledger) == 0


@pytest.mark.asyncio
async def test_claim_is_exclusive_until_released():
    ledger = InMemoryEventLedger()

    assert await ledger.claim_webhook_event("subscription", "evt_1") is True
    assert await ledger.claim_webhook_event("subscription", "evt_1") is False
    assert await ledger.has_processed_webhook_event("subscription", "evt_1") is False

    await ledger.release_webhook_event("subscription", "evt_1")
    assert len(ledger) == 0
    assert await ledger.claim_webhook_event("subscription", "evt_1") is True


@pytest.mark.asyncio
async def test_processed_event_cannot_be_claimed_or_released():
    ledger = InMemoryEventLedger()
    assert await ledger.claim_webhook_event("subscription", "evt_1") is True
    await ledger.record_webhook_event("subscription", "evt_1", "processed")

    await ledger.release_webhook_event("subscription", "evt_1")

    assert await ledger.claim_webhook_event("subscription", "evt_1") is False
    assert await ledger.has_processed_webhook_event("subscription", "evt_1") is True


@pytest.mark.asyncio
async def test_claim_without_event_id_always_proceeds():
    ledger = InMemoryEventLedger()

    assert await ledger.claim_webhook_event("subscription", "") is True
    assert await ledger.claim_webhook_event("subscription", "") is True
    assert len(ledger) == 0


def test_invalid_size_rejected():
    with pytest.raises(ValueError):
        InMemoryEventLedger(max_size=0)


class _DummyQuery:
    """supabase 쿼리 빌더 더블 (체이닝 호출 기록)"""

    def __init__(self, table, data=None, error=None):
        self.table = table
        self.data = data if data is not None else []
        self.error = error
        self.calls = []

    def __getattr__(self, name):
        def _method(*args, **kwargs):
            self.calls.append((name, args))
            return self
        return _method

    def execute(self):
        if self.error:
            raise self.error
        return self


class _DummySupabase:
    """responses가 있으면 table() 호출마다 하나씩 소비 (목록은 data, 예외는 error)"""

    def __init__(self, data=None, error=None, responses=None):
        self.queries = []
        self._data = data
        self._error = error
        self._responses = list(responses or [])

    def table(self, name):
        data, error = self._data, self._error
        if self._responses:
            response = self._responses.pop(0)
            if isinstance(response, Exception):
                data, error = None, response
            else:
                data, error = response, None
        query = _DummyQuery(name, data, error)
        self.queries.append(query)
        return query


@pytest.mark.asyncio
async def test_database_helper_records_processed_event():
    client = _DummySupabase(data=[{"id": 1}])
    helper = DatabaseHelper(client)

    assert await helper.record_webhook_event("subscription", "evt_1", "processed", {"topic": "subscription/created"}) is True

    query = client.queries[0]
    assert query.table == "system_logs"
    assert query.calls[0] == ("insert", ({
        "event_type": "subscription_webhook",
        "event_data": {"event_id": "evt_1", "status": "processed", "payload": {"topic": "subscription/created"}},
    },))

    cleanup = dict(client.queries[1].calls)
    assert "delete" in cleanup
    assert cleanup["contains"] == ("event_data", {"event_id": "evt_1", "status": "processing"})


@pytest.mark.asyncio
async def test_database_helper_lookup():
    client = _DummySupabase(data=[{"id": 1}])
    helper = DatabaseHelper(client)

    assert await helper.has_processed_webhook_event("subscription", "evt_1") is True
    calls = dict(client.queries[0].calls)
    assert calls["eq"] == ("event_type", "subscription_webhook")
    assert calls["contains"] == ("event_data", {"event_id": "evt_1", "status": "processed"})


@pytest.mark.asyncio
async def test_database_helper_lookup_failure_allows_processing():
    helper = DatabaseHelper(_DummySupabase(error=RuntimeError("connection reset")))

    assert await helper.has_processed_webhook_event("subscription", "evt_1") is False


@pytest.mark.asyncio
async def test_database_helper_claim_wins_as_earliest_row():
    client = _DummySupabase(responses=[[{"id": 7}], [{"id": 7}], []])
    helper = DatabaseHelper(client)

    assert await helper.claim_webhook_event("subscription", "evt_1") is True

    insert = client.queries[0].calls[0]
    assert insert == ("insert", ({
        "event_type": "subscription_webhook",
        "event_data": {"event_id": "evt_1", "status": "processing"},
    },))
    earliest = dict(client.queries[1].calls)
    assert earliest["order"] == ("id",)
    assert earliest["contains"] == ("event_data", {"event_id": "evt_1", "status": "processing"})
    assert len(client.queries) == 3


@pytest.mark.asyncio
async def test_database_helper_claim_loses_to_earlier_row():
    client = _DummySupabase(responses=[[{"id": 8}], [{"id": 7}], []])
    helper = DatabaseHelper(client)

    assert await helper.claim_webhook_event("subscription", "evt_1") is False

    rollback = client.queries[2].calls
    assert rollback == [("delete", ()), ("eq", ("id", 8))]


@pytest.mark.asyncio
async def test_database_helper_claim_rejects_processed_event():
    client = _DummySupabase(responses=[[{"id": 7}], [{"id": 7}], [{"id": 3}], []])
    helper = DatabaseHelper(client)

    assert await helper.claim_webhook_event("subscription", "evt_1") is False
    assert client.queries[3].calls == [("delete", ()), ("eq", ("id", 7))]


@pytest.mark.asyncio
async def test_database_helper_claim_failure_allows_processing():
    helper = DatabaseHelper(_DummySupabase(error=RuntimeError("connection reset")))

    assert await helper.claim_webhook_event("subscription", "evt_1") is True


@pytest.mark.asyncio
async def test_database_helper_release_deletes_processing_rows():
    client = _DummySupabase(data=[])
    helper = DatabaseHelper(client)

    await helper.release_webhook_event("subscription", "evt_1")

    calls = dict(client.queries[0].calls)
    assert "delete" in calls
    assert calls["eq"] == ("event_type", "subscription_webhook")
    assert calls["contains"] == ("event_data", {"event_id": "evt_1", "status": "processing"})
