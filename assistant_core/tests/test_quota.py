import pytest

from assistant_core.domain.exceptions import ErrorKind, QuotaExceeded, classify_error
from assistant_core.domain.models import QuotaState
from assistant_core.guards.quota import QuotaGate, StaticUsageBackend


@pytest.mark.asyncio
async def test_quota_exhausted_raises_with_usage_limit_plan():
    backend = StaticUsageBackend({"ws-1": QuotaState(plan_id="free", used=25, limit=25)})
    gate = QuotaGate(backend)
    with pytest.raises(QuotaExceeded) as info:
        await gate.check("ws-1")
    err = info.value
    assert (err.usage, err.limit, err.plan) == (25, 25, "free")
    assert "25/25" in err.message and "free" in err.message
    assert classify_error(err) == ErrorKind.QUOTA_EXCEEDED


@pytest.mark.asyncio
async def test_quota_under_limit_and_unlimited_pass():
    backend = StaticUsageBackend(
        {
            "ws-1": QuotaState(plan_id="pro", used=3, limit=500),
            "ws-admin": QuotaState(plan_id="admin", used=10_000, limit=None),
        }
    )
    gate = QuotaGate(backend)
    state = await gate.check("ws-1")
    assert state.remaining == 497
    assert (await gate.check("ws-admin")).remaining is None


@pytest.mark.asyncio
async def test_quota_without_workspace_or_backend_failure_is_allowed():
    class BrokenBackend:
        async def fetch_usage(self, workspace_id):
            raise ConnectionError("backend down")

    gate = QuotaGate(BrokenBackend())
    assert await gate.check(None) is None
    assert await gate.check("ws-1") is None
