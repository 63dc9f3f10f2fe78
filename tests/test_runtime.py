from __future__ import annotations

import asyncio
import threading

from dime_portfolio.runtime import BackgroundLoop, DashboardRuntime, SessionRegistry
from dime_portfolio.sync import SyncState

from conftest import FakeGateway


def test_background_loop_runs_coroutines_off_thread():
    loop = BackgroundLoop(name="test-loop")

    async def where():
        await asyncio.sleep(0)
        return threading.current_thread().name

    try:
        assert loop.run(where()) == "test-loop"
        assert loop.run(where()) == "test-loop"
    finally:
        loop.shutdown()


def test_shutdown_runs_closers():
    loop = BackgroundLoop(name="test-loop-closers")
    closed = []

    async def closer():
        closed.append(True)

    loop.run(asyncio.sleep(0))
    loop.add_closer(closer)
    loop.shutdown()
    assert closed == [True]


def test_runtime_assembles_and_closes(gateway):
    loop = BackgroundLoop(name="test-loop-runtime")
    try:
        runtime = loop.run(DashboardRuntime.assemble(gateway))
        assert runtime.session.email == "alice@example.com"
        assert runtime.controller.state == SyncState.READY
        assert runtime.pending is runtime.controller.pending

        loop.run(runtime.close())
        assert gateway.subscriptions[0].closed
        assert gateway.session_callbacks == []
    finally:
        loop.shutdown()


def test_closing_a_runtime_releases_its_shutdown_hook(gateway):
    loop = BackgroundLoop(name="test-loop-release")
    try:
        runtime = loop.run(DashboardRuntime.assemble(gateway))
        runtime.on_close(loop.add_closer(runtime.close))
        assert loop.closer_count == 1

        loop.run(runtime.close())
        assert loop.closer_count == 0
        loop.run(runtime.close())
    finally:
        loop.shutdown()


def test_registry_closes_runtimes_of_ended_sessions(people, funds):
    loop = BackgroundLoop(name="test-loop-registry")
    registry = SessionRegistry(loop)
    gateways = {sid: FakeGateway(people, funds, email="alice@example.com") for sid in ("s1", "s2")}
    try:
        for sid, gw in gateways.items():
            registry.add(sid, loop.run(DashboardRuntime.assemble(gw)))
        assert len(registry) == 2
        assert loop.closer_count == 2

        closed = registry.sweep(lambda sid: sid == "s2")

        assert closed == 1
        assert "s1" not in registry and "s2" in registry
        assert gateways["s1"].subscriptions[0].closed
        assert gateways["s1"].session_callbacks == []
        assert not gateways["s2"].subscriptions[0].closed
        assert loop.closer_count == 1
    finally:
        loop.shutdown()
    assert gateways["s2"].subscriptions[0].closed


def test_registry_replaces_a_session_runtime(people, funds):
    loop = BackgroundLoop(name="test-loop-replace")
    registry = SessionRegistry(loop)
    first, second = FakeGateway(people, funds), FakeGateway(people, funds)
    try:
        registry.add("s1", loop.run(DashboardRuntime.assemble(first)))
        registry.add("s1", loop.run(DashboardRuntime.assemble(second)))
        assert len(registry) == 1
        assert loop.closer_count == 1
        assert first.subscriptions[0].closed
    finally:
        loop.shutdown()
