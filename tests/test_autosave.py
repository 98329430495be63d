import asyncio

from azimuth.app.autosave import AutosaveScheduler, derive_title
from azimuth.app.models import TabKey, WorkspaceSettings
from azimuth.app.tabs import TabSessionManager
from conftest import note

DELAY = 0.01
A = TabKey("a.md", "/ws")
B = TabKey("b.md", "/ws")


def _scheduler(backend, settings=None, reports=None, refreshed=None):
    tabs = TabSessionManager()
    settings = settings or WorkspaceSettings()

    async def on_refresh(folder):
        if refreshed is not None:
            refreshed.append(folder)

    scheduler = AutosaveScheduler(
        tabs,
        backend,
        lambda: settings,
        delay=DELAY,
        on_refresh=on_refresh,
        report=reports.append if reports is not None else None,
    )
    tabs.open(note("a.md", "/ws", "foo"))
    return tabs, scheduler


def _edit(tabs, scheduler, content):
    tabs.edit(content)
    scheduler.arm()


def test_derive_title():
    assert derive_title("# Hello\nbody") == "Hello"
    assert derive_title("### Deep") == "Deep"
    assert derive_title("plain first line") == "plain first line"
    assert derive_title("") == "Untitled"
    assert derive_title("#   \nbody") == "Untitled"


def test_edits_are_debounced_into_one_save(backend):
    tabs, scheduler = _scheduler(backend)

    async def run():
        _edit(tabs, scheduler, "f")
        _edit(tabs, scheduler, "fo")
        _edit(tabs, scheduler, "foo bar")
        assert scheduler.pending(A)
        await asyncio.sleep(DELAY * 5)

    asyncio.run(run())
    assert backend.calls_to("save_note") == [("/ws", "a.md", "foo bar")]
    assert not tabs.active_tab.is_dirty
    assert tabs.active_tab.note.title == "foo bar"


def test_switch_before_fire_aborts_save(backend):
    tabs, scheduler = _scheduler(backend)

    async def run():
        _edit(tabs, scheduler, "foobar")
        tabs.open(note("b.md", "/ws", "other"))
        await asyncio.sleep(DELAY * 5)

    asyncio.run(run())
    assert backend.count("save_note") == 0
    assert tabs.get(A).is_dirty
    assert tabs.get(A).content == "foobar"


def test_manual_save_cancels_pending_autosave(backend):
    refreshed = []
    tabs, scheduler = _scheduler(backend, refreshed=refreshed)

    async def run():
        _edit(tabs, scheduler, "foobar")
        assert await scheduler.save_now()
        assert not scheduler.pending(A)
        await asyncio.sleep(DELAY * 5)

    asyncio.run(run())
    assert backend.calls_to("save_note") == [("/ws", "a.md", "foobar")]
    assert refreshed == ["/ws"]


def test_manual_save_waits_for_inflight_autosave(backend):
    tabs, scheduler = _scheduler(backend)

    async def run():
        backend.gates["save_note"] = asyncio.Event()
        _edit(tabs, scheduler, "foobar")
        await asyncio.sleep(DELAY * 3)
        assert backend.count("save_note") == 1
        manual = asyncio.create_task(scheduler.save_now())
        await asyncio.sleep(0)
        backend.gates["save_note"].set()
        return await manual

    assert asyncio.run(run())
    assert backend.count("save_note") == 1
    assert not tabs.active_tab.is_dirty


def test_typing_during_save_stays_dirty(backend):
    tabs, scheduler = _scheduler(backend)

    async def run():
        backend.gates["save_note"] = asyncio.Event()
        _edit(tabs, scheduler, "foo1")
        await asyncio.sleep(DELAY * 3)
        tabs.edit("foo12")
        backend.gates["save_note"].set()
        await asyncio.sleep(DELAY)

    asyncio.run(run())
    tab = tabs.active_tab
    assert tab.note.content == "foo1"
    assert tab.content == "foo12"
    assert tab.is_dirty


def test_disabled_autosave_does_not_save(backend):
    tabs, scheduler = _scheduler(backend, settings=WorkspaceSettings(auto_save=False))

    async def run():
        _edit(tabs, scheduler, "foobar")
        await asyncio.sleep(DELAY * 5)

    asyncio.run(run())
    assert backend.count("save_note") == 0


def test_unchanged_content_is_not_saved(backend):
    tabs, scheduler = _scheduler(backend)

    async def run():
        _edit(tabs, scheduler, "foo")
        await asyncio.sleep(DELAY * 5)

    asyncio.run(run())
    assert backend.count("save_note") == 0


def test_failed_save_keeps_tab_dirty_and_reports(backend):
    backend.fail.add("save_note")
    reports = []
    tabs, scheduler = _scheduler(backend, reports=reports)

    async def run():
        _edit(tabs, scheduler, "foobar")
        await asyncio.sleep(DELAY * 5)

    asyncio.run(run())
    assert tabs.active_tab.is_dirty
    assert reports and "Failed to save" in reports[0]


def test_cancel_all_drops_timers(backend):
    tabs, scheduler = _scheduler(backend)

    async def run():
        _edit(tabs, scheduler, "foobar")
        tabs.open(note("b.md", "/ws", "x"))
        _edit(tabs, scheduler, "xy")
        assert scheduler.pending(A) and scheduler.pending(B)
        scheduler.cancel_all()
        await asyncio.sleep(DELAY * 5)

    asyncio.run(run())
    assert backend.count("save_note") == 0
