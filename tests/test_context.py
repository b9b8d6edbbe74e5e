"""Tests for the context chain."""

import asyncio
import gc
import time
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import MagicMock

from contextchain.apis import MissingParentInstanceError, UnresolvedDependencyError
from contextchain.config import ContextConfig
from contextchain.context import Context, ContextNode, RootContext
from contextchain.interfaces import ApiFactory, ApiRef


class TestRootContext:
    """Tests for root creation."""

    def test_create(self):
        """Test that a fresh root is empty and not aborted."""
        ctx = RootContext.create()

        assert isinstance(ctx, Context)
        assert ctx.parent is None
        assert not ctx.aborted
        assert ctx.deadline is None
        assert ctx.value("anything") is None
        assert ctx.api(ApiRef("anything")) is None

    def test_node_requires_controller_at_root(self):
        """Test that a parentless node must own a controller."""
        with pytest.raises(ValueError):
            ContextNode()

    def test_from_config_applies_values(self):
        """Test that configured values are set on the chain."""
        config = ContextConfig(values={"region": "eu", "retries": 3})

        ctx = RootContext.from_config(config)

        assert ctx.value("region") == "eu"
        assert ctx.value("retries") == 3
        assert ctx.deadline is None

    async def test_from_config_applies_timeout(self):
        """Test that a configured default timeout becomes the deadline."""
        config = ContextConfig(default_timeout_seconds=30)

        ctx = RootContext.from_config(config)

        assert ctx.deadline is not None
        assert not ctx.aborted

    def test_from_config_rejects_invalid(self):
        """Test that invalid configuration is refused."""
        with pytest.raises(ValueError, match="Invalid configuration"):
            RootContext.from_config(ContextConfig(instance_id=""))


class TestAbort:
    """Tests for manual aborts."""

    async def test_can_perform_a_manual_abort(self):
        """Test that abort fires the signal and the future once each."""
        ctx, abort = RootContext.create().with_abort()

        cb = MagicMock()
        ctx.abort_signal.add_listener(cb)
        ctx.abort_future.add_done_callback(cb)

        abort()

        await ctx.abort_future
        await asyncio.sleep(0)
        assert cb.call_count == 2

    def test_abort_does_not_mutate_parent(self):
        """Test that aborting a derived context leaves the parent alone."""
        root = RootContext.create()
        ctx, abort = root.with_abort()
        sibling, _ = root.with_abort()

        abort()

        assert ctx.aborted
        assert not root.aborted
        assert not sibling.aborted

    def test_grandparent_abort_reaches_leaf(self):
        """Test propagation through intermediate value and API nodes."""
        top, abort = RootContext.create().with_abort()
        leaf, _ = (
            top.with_value("a", 1)
            .with_apis(ApiFactory(api=ApiRef("x"), produce=lambda deps: 1))
            .with_abort()
        )
        leaf = leaf.with_value("b", 2)

        abort()

        assert leaf.aborted

    def test_trigger_after_ancestor_abort_is_noop(self):
        """Test that a late trigger does nothing."""
        parent, abort_parent = RootContext.create().with_abort()
        child, abort_child = parent.with_abort()

        abort_parent()
        abort_child()

        assert child.aborted

    def test_derive_from_aborted_context(self):
        """Test that a context derived from an aborted one is aborted."""
        parent, abort = RootContext.create().with_abort()
        abort()

        child, _ = parent.with_abort()

        assert child.aborted

    def test_value_node_shares_parent_signal(self):
        """Test that non-abort derivations expose the parent signal."""
        ctx, _ = RootContext.create().with_abort()

        assert ctx.with_value("a", 1).abort_signal is ctx.abort_signal

    async def test_dropped_child_future_settles_on_parent_abort(self):
        """Test that a future outlives the child context it came from."""
        parent, abort = RootContext.create().with_abort()
        future = parent.with_abort()[0].abort_future
        gc.collect()

        abort()
        await asyncio.wait_for(future, 0.5)

        assert future.done()

    async def test_dropped_child_listener_fires_on_grandparent_abort(self):
        """Test that listeners on an unreferenced branch still fire."""
        top, abort = RootContext.create().with_abort()
        cb = MagicMock()
        leaf, _ = top.with_value("a", 1).with_abort()
        leaf.with_value("b", 2).with_abort()[0].abort_signal.add_listener(cb)
        del leaf
        gc.collect()

        abort()
        await asyncio.sleep(0)

        cb.assert_called_once_with()

    async def test_dropped_child_future_settles_while_awaited(self):
        """Test a pending wait on a child that nothing else references."""
        parent, abort = RootContext.create().with_abort()
        waiting = asyncio.ensure_future(parent.with_abort()[0].abort_signal.wait())
        await asyncio.sleep(0)
        gc.collect()

        abort()

        await asyncio.wait_for(waiting, 0.5)


class TestTimeout:
    """Tests for timed aborts."""

    async def test_can_abort_on_a_timeout(self):
        """Test that the context aborts after roughly the timeout."""
        ctx = RootContext.create().with_timeout(timedelta(milliseconds=200))
        start = time.monotonic()

        cb = MagicMock()
        ctx.abort_signal.add_listener(cb)
        ctx.abort_future.add_done_callback(cb)

        await ctx.abort_future
        await asyncio.sleep(0)
        delta = time.monotonic() - start

        assert delta > 0.1
        assert delta < 0.3
        assert cb.call_count == 2

    async def test_accepts_seconds(self):
        """Test a plain number of seconds as timeout."""
        ctx = RootContext.create().with_timeout(0.05)

        await asyncio.wait_for(ctx.abort_future, 1)

        assert ctx.aborted

    async def test_deadline(self):
        """Test that the deadline is now plus the timeout."""
        before = datetime.now(timezone.utc)
        ctx = RootContext.create().with_timeout(timedelta(seconds=10))
        after = datetime.now(timezone.utc)

        assert before + timedelta(seconds=10) <= ctx.deadline
        assert ctx.deadline <= after + timedelta(seconds=10)

    async def test_deadline_never_later_than_parent(self):
        """Test that the nearest deadline wins."""
        parent = RootContext.create().with_timeout(timedelta(seconds=1))
        child = parent.with_timeout(timedelta(seconds=60))
        grandchild = child.with_timeout(timedelta(milliseconds=100))

        assert child.deadline == parent.deadline
        assert grandchild.deadline < parent.deadline

    async def test_deadline_inherited_by_other_derivations(self):
        """Test that value and abort nodes report the parent deadline."""
        parent = RootContext.create().with_timeout(timedelta(seconds=5))
        child, _ = parent.with_value("a", 1).with_abort()

        assert child.deadline == parent.deadline

    async def test_parent_abort_before_timeout(self):
        """Test that a parent abort wins over a long timeout."""
        parent, abort = RootContext.create().with_abort()
        ctx = parent.with_timeout(timedelta(seconds=60))

        abort()
        await asyncio.wait_for(ctx.abort_future, 1)

        assert ctx.aborted

    async def test_timeout_does_not_abort_parent(self):
        """Test that an expiring child leaves its parent running."""
        parent = RootContext.create()
        ctx = parent.with_timeout(0.01)

        await ctx.abort_future

        assert not parent.aborted

    async def test_rejects_negative_timeout(self):
        """Test that negative timeouts are refused."""
        with pytest.raises(ValueError):
            RootContext.create().with_timeout(-1)

    def test_timeout_without_running_loop(self):
        """Test building a timeout context from synchronous code."""
        before = datetime.now(timezone.utc)
        ctx = RootContext.create().with_timeout(1.0)

        assert ctx.deadline >= before + timedelta(seconds=1)
        assert not ctx.aborted
        assert not ctx.abort_future.done()

    def test_timeout_built_without_loop_fires_when_awaited(self):
        """Test that a context built outside a loop times out inside one."""
        ctx = RootContext.create().with_timeout(0.05).with_value("a", 1)

        async def wait():
            await asyncio.wait_for(ctx.abort_future, 1)

        asyncio.run(wait())

        assert ctx.aborted

    def test_from_config_without_running_loop(self):
        """Test a configured default timeout from synchronous code."""
        ctx = RootContext.from_config(ContextConfig(default_timeout_seconds=5))

        assert ctx.deadline is not None
        assert not ctx.aborted


class TestApis:
    """Tests for API holding and lookup."""

    def test_can_hold_apis(self):
        """Test resolution of factories with dependencies."""
        api_b = ApiFactory(api=ApiRef("b"), produce=lambda deps: 1)
        api_a = ApiFactory(
            api=ApiRef("a"), deps={"bi": api_b.api}, produce=lambda deps: deps["bi"] + 1
        )

        ctx = RootContext.create().with_apis(api_a, api_b)

        assert ctx.api(api_a.api) == 2
        assert ctx.api(api_b.api) == 1

    def test_unknown_api_is_none(self):
        """Test that lookups of unregistered refs fail soft."""
        ctx = RootContext.create().with_apis(
            ApiFactory(api=ApiRef("a"), produce=lambda deps: 1)
        )

        assert ctx.api(ApiRef("nope")) is None

    def test_transfer_from_parent(self):
        """Test passing a parent instance through by reference."""
        instance = object()
        parent = RootContext.create().with_apis(
            ApiFactory(api=ApiRef("svc"), produce=lambda deps: instance)
        )

        child = parent.with_value("x", 1).with_apis(ApiRef("svc"))

        assert child.api(ApiRef("svc")) is instance

    def test_depends_on_ancestor_instance(self):
        """Test a factory depending on an instance further up the chain."""
        ctx = (
            RootContext.create()
            .with_apis(ApiFactory(api=ApiRef("base"), produce=lambda deps: 10))
            .with_apis(ApiFactory(api=ApiRef("other"), produce=lambda deps: 0))
            .with_apis(
                ApiFactory(
                    api=ApiRef("top"),
                    deps={"base": ApiRef("base")},
                    produce=lambda deps: deps["base"] + 1,
                )
            )
        )

        assert ctx.api(ApiRef("top")) == 11

    def test_override_shadows_parent(self):
        """Test that a child factory shadows the parent instance."""
        parent = RootContext.create().with_apis(
            ApiFactory(api=ApiRef("a"), produce=lambda deps: 1)
        )
        child = parent.with_apis(ApiFactory(api=ApiRef("a"), produce=lambda deps: 2))

        assert parent.api(ApiRef("a")) == 1
        assert child.api(ApiRef("a")) == 2

    def test_missing_transfer_raises(self):
        """Test that a bare ref unknown to the chain is rejected."""
        with pytest.raises(MissingParentInstanceError):
            RootContext.create().with_apis(ApiRef("nope"))

    def test_dangling_dependency_raises(self):
        """Test that resolver errors surface from with_apis."""
        with pytest.raises(UnresolvedDependencyError, match="c -> missing"):
            RootContext.create().with_apis(
                ApiFactory(
                    api=ApiRef("c"),
                    deps={"m": ApiRef("missing")},
                    produce=lambda deps: None,
                )
            )


class TestValues:
    """Tests for key-value overlays."""

    def test_can_hold_values(self):
        """Test that later derivations never affect earlier contexts."""
        ctx1 = RootContext.create().with_value("a", 1)

        assert ctx1.value("a") == 1

        ctx2 = ctx1.with_value("b", 2).with_value("a", 2)

        assert ctx1.value("a") == 1
        assert ctx1.value("b") is None
        assert ctx2.value("a") == 2
        assert ctx2.value("b") == 2

    def test_updater_receives_previous_value(self):
        """Test computing a value from the inherited one."""
        ctx = RootContext.create().with_value("count", 1)

        ctx = ctx.with_value("count", lambda previous: previous + 1)

        assert ctx.value("count") == 2

    def test_updater_receives_none_when_unset(self):
        """Test the updater on a key that was never set."""
        ctx = RootContext.create().with_value(
            "items", lambda previous: (previous or []) + ["x"]
        )

        assert ctx.value("items") == ["x"]

    def test_branches_are_independent(self):
        """Test that sibling derivations do not see each other."""
        root = RootContext.create().with_value("shared", "root")
        left = root.with_value("side", "left")
        right = root.with_value("side", "right")

        assert left.value("side") == "left"
        assert right.value("side") == "right"
        assert left.value("shared") == right.value("shared") == "root"

    def test_object_keys(self):
        """Test that non-string keys are matched by identity."""
        key = object()
        ctx = RootContext.create().with_value(key, "secret")

        assert ctx.value(key) == "secret"
        assert ctx.value(object()) is None

    def test_stored_none_stops_lookup(self):
        """Test that an explicit None shadows the parent value."""
        ctx = RootContext.create().with_value("a", 1).with_value("a", None)

        assert ctx.value("a", default="fallback") is None

    def test_default(self):
        """Test the default for unset keys."""
        assert RootContext.create().value("a", default=5) == 5
