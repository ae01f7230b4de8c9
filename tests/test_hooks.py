import pytest

from app.core.hooks import HookRegistry


@pytest.mark.asyncio
async def test_dispatch_runs_sync_and_async_hooks_in_order() -> None:
    registry = HookRegistry()
    calls = []

    def sync_hook(value):
        calls.append(("sync", value))

    async def async_hook(value):
        calls.append(("async", value))

    registry.register("evt", sync_hook)
    registry.register("evt", async_hook)

    warnings = await registry.dispatch("evt", 7)
    assert warnings == []
    assert calls == [("sync", 7), ("async", 7)]


@pytest.mark.asyncio
async def test_failing_hook_becomes_warning_and_others_still_run() -> None:
    registry = HookRegistry()
    calls = []

    async def broken(value):
        raise RuntimeError("gateway timeout")

    registry.register("evt", broken)
    registry.register("evt", lambda value: calls.append(value))

    warnings = await registry.dispatch("evt", "x")
    assert warnings == ["evt: broken failed: gateway timeout"]
    assert calls == ["x"]


@pytest.mark.asyncio
async def test_unregister_and_unknown_event() -> None:
    registry = HookRegistry()
    calls = []

    def hook():
        calls.append(1)

    registry.register("evt", hook)
    registry.unregister("evt", hook)
    assert await registry.dispatch("evt") == []
    assert await registry.dispatch("nothing-registered") == []
    assert calls == []
