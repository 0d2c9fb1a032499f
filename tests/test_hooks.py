"""Unit tests for traceqa.engine.hooks — dispatcher, hook chain and fixture injection."""

from __future__ import annotations

import contextlib
import types

import pytest

from traceqa.engine.hooks import (
    WRAPPERS_ATTRIBUTE,
    EventType,
    FixtureInjector,
    HookChain,
    ReportDispatcher,
    ReportEvent,
    run_wrapped,
    wrappers_for,
)


def _make_event(**overrides) -> ReportEvent:
    defaults = {"type": EventType.PASS, "message": "ok"}
    defaults.update(overrides)
    return ReportEvent(**defaults)


# ---------------------------------------------------------------------------
# 1. ReportDispatcher
# ---------------------------------------------------------------------------

class TestReportDispatcher:
    """The original handler always runs; listeners only while enabled."""

    def test_original_runs_before_listeners(self):
        calls: list[str] = []
        dispatcher = ReportDispatcher(handler=lambda e: calls.append("original"))
        dispatcher.capture_original()
        dispatcher.register(lambda e: calls.append("listener"))
        dispatcher.set_enabled_check(lambda: True)
        dispatcher.dispatch(_make_event())
        assert calls == ["original", "listener"]

    def test_disabled_skips_listeners(self):
        calls: list[str] = []
        dispatcher = ReportDispatcher(handler=lambda e: calls.append("original"))
        dispatcher.register(lambda e: calls.append("listener"))
        dispatcher.dispatch(_make_event())
        assert calls == ["original"]

    def test_register_deduplicates(self):
        dispatcher = ReportDispatcher()

        def listener(e):
            pass

        assert dispatcher.register(listener) is True
        assert dispatcher.register(listener) is False
        assert dispatcher.listeners == (listener,)

    def test_capture_original_only_once(self):
        first = lambda e: None  # noqa: E731
        dispatcher = ReportDispatcher(handler=first)
        assert dispatcher.capture_original() is first
        dispatcher._handler = lambda e: None
        assert dispatcher.capture_original() is first
        assert dispatcher.original is first

    def test_original_is_unset_until_captured(self):
        dispatcher = ReportDispatcher(handler=lambda e: None)
        assert dispatcher.original is None
        HookChain(lambda e: None, lambda: True).install(dispatcher)
        assert dispatcher.original is not None


# ---------------------------------------------------------------------------
# 2. HookChain install idempotency
# ---------------------------------------------------------------------------

class TestHookChain:
    """Installing twice captures once and registers one listener."""

    def test_install_twice_delivers_once(self):
        original_calls: list[ReportEvent] = []
        received: list[ReportEvent] = []
        dispatcher = ReportDispatcher(handler=original_calls.append)
        chain = HookChain(received.append, lambda: True)

        assert chain.install(dispatcher) is True
        assert chain.install(dispatcher) is False
        event = _make_event()
        dispatcher.dispatch(event)

        assert original_calls == [event]
        assert received == [event]
        assert len(dispatcher.listeners) == 1

    def test_enabled_check_is_consulted_per_dispatch(self):
        state = {"enabled": False}
        received: list[ReportEvent] = []
        dispatcher = ReportDispatcher()
        HookChain(received.append, lambda: state["enabled"]).install(dispatcher)

        dispatcher.dispatch(_make_event())
        state["enabled"] = True
        dispatcher.dispatch(_make_event(message="second"))
        assert [e.message for e in received] == ["second"]


# ---------------------------------------------------------------------------
# 3. Wrapper chains
# ---------------------------------------------------------------------------

class TestRunWrapped:
    def test_first_wrapper_is_outermost(self):
        order: list[str] = []

        def make(name):
            @contextlib.contextmanager
            def wrapper():
                order.append(f"{name}:enter")
                yield
                order.append(f"{name}:exit")

            return wrapper

        with run_wrapped([make("tracing"), make("user")]):
            order.append("body")
        assert order == ["tracing:enter", "user:enter", "body", "user:exit", "tracing:exit"]

    def test_wrappers_exit_when_body_raises(self):
        exited: list[str] = []

        @contextlib.contextmanager
        def wrapper():
            try:
                yield
            finally:
                exited.append("tracing")

        with pytest.raises(RuntimeError):
            with run_wrapped([wrapper]):
                raise RuntimeError("boom")
        assert exited == ["tracing"]

    def test_no_wrappers_runs_body(self):
        ran = []
        with run_wrapped([]):
            ran.append(True)
        assert ran == [True]

    def test_wrappers_for_missing_attribute(self):
        assert wrappers_for(types.SimpleNamespace()) == []


# ---------------------------------------------------------------------------
# 4. FixtureInjector
# ---------------------------------------------------------------------------

def _tracing():
    return contextlib.nullcontext()


def _user_wrapper():
    return contextlib.nullcontext()


class TestFixtureInjector:
    """The tracing wrapper is prepended and the exact original list restored."""

    def test_inject_prepends_tracing_wrapper(self):
        original = [_user_wrapper]
        holder = types.SimpleNamespace(**{WRAPPERS_ATTRIBUTE: original})
        injector = FixtureInjector(_tracing)
        injector.inject("pkg.test_mod", holder)
        assert getattr(holder, WRAPPERS_ATTRIBUTE) == [_tracing, _user_wrapper]
        assert original == [_user_wrapper]

    def test_restore_puts_back_same_object(self):
        original = [_user_wrapper]
        holder = types.SimpleNamespace(**{WRAPPERS_ATTRIBUTE: original})
        injector = FixtureInjector(_tracing)
        injector.inject("ns", holder)
        injector.restore("ns")
        assert getattr(holder, WRAPPERS_ATTRIBUTE) is original

    def test_restore_removes_attribute_that_was_missing(self):
        holder = types.SimpleNamespace()
        injector = FixtureInjector(_tracing)
        injector.inject("ns", holder)
        assert wrappers_for(holder) == [_tracing]
        injector.restore("ns")
        assert not hasattr(holder, WRAPPERS_ATTRIBUTE)

    def test_repeated_cycles_do_not_drift(self):
        original = [_user_wrapper]
        holder = types.SimpleNamespace(**{WRAPPERS_ATTRIBUTE: original})
        injector = FixtureInjector(_tracing)
        for _ in range(3):
            injector.inject("ns", holder)
            assert getattr(holder, WRAPPERS_ATTRIBUTE) == [_tracing, _user_wrapper]
            injector.restore("ns")
        assert getattr(holder, WRAPPERS_ATTRIBUTE) is original

    def test_double_begin_keeps_first_saved_list(self):
        original = [_user_wrapper]
        holder = types.SimpleNamespace(**{WRAPPERS_ATTRIBUTE: original})
        injector = FixtureInjector(_tracing)
        injector.inject("ns", holder)
        injector.inject("ns", holder)
        assert getattr(holder, WRAPPERS_ATTRIBUTE) == [_tracing, _user_wrapper]
        injector.restore("ns")
        assert getattr(holder, WRAPPERS_ATTRIBUTE) is original

    def test_restore_all(self):
        a, b = types.SimpleNamespace(), types.SimpleNamespace()
        injector = FixtureInjector(_tracing)
        injector.inject("a", a)
        injector.inject("b", b)
        assert injector.injected == ("a", "b")
        injector.restore_all()
        assert injector.injected == ()
        assert not hasattr(a, WRAPPERS_ATTRIBUTE)

    def test_none_holder_is_ignored(self):
        injector = FixtureInjector(_tracing)
        injector.inject("ns", None)
        assert injector.injected == ()
