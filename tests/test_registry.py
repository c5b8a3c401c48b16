"""Tests for the tool registry."""

import pytest

from scaffold_recipes.errors import ToolNotFoundError
from scaffold_recipes.tools import DEFAULT_TOOLS
from scaffold_recipes.tools import tool_health_summary
from scaffold_recipes.tools.base import Tool
from scaffold_recipes.tools.registry import SearchCriteria
from scaffold_recipes.tools.registry import ToolMetadata
from scaffold_recipes.tools.registry import ToolRegistry
from scaffold_recipes.tools.shell import ShellTool


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class DummyTool(Tool):
    tool_type = "dummy"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dummy_registry(clock):
    registry = ToolRegistry(ttl=60, max_cache_size=3, clock=clock)
    registry.register("dummy", "default", DummyTool, ToolMetadata(category="testing", tags=["fake"]))
    return registry


class TestResolve:
    """Tests for instance resolution and caching."""

    def test_unknown_tool(self, dummy_registry):
        with pytest.raises(ToolNotFoundError, match="No tool registered for 'missing:default'"):
            dummy_registry.resolve("missing")

    def test_disabled_tool(self, dummy_registry):
        dummy_registry.get_registration("dummy").metadata.enabled = False
        with pytest.raises(ToolNotFoundError, match="disabled"):
            dummy_registry.resolve("dummy")

    def test_released_instance_is_reused(self, dummy_registry):
        first = dummy_registry.resolve("dummy")
        assert dummy_registry.release(first)
        second = dummy_registry.resolve("dummy")
        assert second is first
        stats = dummy_registry.get_stats()
        assert stats["cache_hits"] == 1
        assert stats["cache_misses"] == 1

    def test_busy_instance_yields_transient(self, dummy_registry):
        first = dummy_registry.resolve("dummy")
        second = dummy_registry.resolve("dummy")
        assert second is not first
        assert dummy_registry.release(first)
        assert not dummy_registry.release(second)

    def test_options_key_the_cache(self, dummy_registry):
        plain = dummy_registry.resolve("dummy")
        dummy_registry.release(plain)
        configured = dummy_registry.resolve("dummy", options={"verbose": True})
        assert configured is not plain
        assert configured.options == {"verbose": True}

    def test_force_new(self, dummy_registry):
        first = dummy_registry.resolve("dummy")
        dummy_registry.release(first)
        assert dummy_registry.resolve("dummy", force_new=True) is not first

    def test_factory_receives_name_and_options(self):
        registry = ToolRegistry()
        registry.register("shell", "custom", ShellTool)
        tool = registry.resolve("shell", "custom", {"a": 1})
        assert isinstance(tool, ShellTool)
        assert tool.name == "custom"


class TestEviction:
    """Tests for TTL and size-bounded eviction."""

    def test_expired_idle_instances_are_evicted(self, dummy_registry, clock):
        tool = dummy_registry.resolve("dummy")
        dummy_registry.release(tool)
        clock.now = 61
        assert dummy_registry.cleanup_expired() == [tool]
        assert dummy_registry.cached_instances() == []

    def test_in_use_instances_survive_expiry(self, dummy_registry, clock):
        dummy_registry.resolve("dummy")
        clock.now = 1000
        assert dummy_registry.cleanup_expired() == []

    def test_cache_size_is_bounded(self, dummy_registry):
        for i in range(5):
            tool = dummy_registry.resolve("dummy", options={"n": i})
            dummy_registry.release(tool)
        assert len(dummy_registry.cached_instances()) == 3

    @pytest.mark.asyncio
    async def test_eviction_task_lifecycle(self, dummy_registry):
        dummy_registry.start_eviction()
        assert dummy_registry.eviction_running
        await dummy_registry.stop_eviction()
        assert not dummy_registry.eviction_running
        assert dummy_registry._eviction_task is None

    @pytest.mark.asyncio
    async def test_size_evicted_instance_is_cleaned_up(self, dummy_registry):
        tools = []
        for i in range(4):
            tool = dummy_registry.resolve("dummy", options={"n": i})
            await tool.initialize()
            dummy_registry.release(tool)
            tools.append(tool)

        assert await dummy_registry.cleanup_evicted() == 1

        assert not tools[0].is_initialized
        assert all(tool.is_initialized for tool in tools[1:])

    @pytest.mark.asyncio
    async def test_unregistered_instance_is_cleaned_up(self, dummy_registry):
        tool = dummy_registry.resolve("dummy")
        await tool.initialize()
        dummy_registry.release(tool)

        dummy_registry.unregister("dummy")

        assert await dummy_registry.cleanup_evicted() == 1
        assert not tool.is_initialized

    @pytest.mark.asyncio
    async def test_cleanup_waits_for_executing_instance(self, dummy_registry):
        tool = dummy_registry.resolve("dummy")
        await tool.initialize()
        tool._executing = True
        dummy_registry.unregister("dummy")

        assert await dummy_registry.cleanup_evicted() == 0
        assert tool.is_initialized

        tool._executing = False
        assert await dummy_registry.cleanup_evicted() == 1
        assert not tool.is_initialized


class TestCatalog:
    """Tests for registration management, search and health."""

    def test_unregister_drops_cache(self, dummy_registry):
        tool = dummy_registry.resolve("dummy")
        dummy_registry.release(tool)
        assert dummy_registry.unregister("dummy")
        assert not dummy_registry.is_registered("dummy")
        assert dummy_registry.cached_instances() == []
        assert not dummy_registry.unregister("dummy")

    def test_search(self, registry):
        composition = registry.search(category="composition")
        assert [r.tool_type for r in composition] == ["parallel", "recipe", "sequence"]
        assert registry.search(SearchCriteria(tool_type="shell"))[0].metadata.category == "system"
        assert registry.search(tags=["nonexistent"]) == []

    def test_default_tools_registered(self, registry):
        for tool_cls, _, _ in DEFAULT_TOOLS:
            assert registry.is_registered(tool_cls.tool_type)
        assert registry.get_stats()["total_registrations"] == len(DEFAULT_TOOLS)

    def test_health_of_empty_registry(self):
        health = ToolRegistry().check_health()
        assert not health.healthy
        assert "No tools are registered" in health.issues

    def test_health_summary(self, registry):
        summary = tool_health_summary(registry)
        assert summary["healthy"]
        types = [tool["type"] for tool in summary["tools"]]
        assert "template" in types
        assert "ai" in types

    def test_reset(self, registry):
        registry.reset()
        assert registry.get_stats()["total_registrations"] == 0
