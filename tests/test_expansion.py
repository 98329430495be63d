import asyncio

from azimuth.app.expansion import ExpansionController
from azimuth.app.tree_store import TreeStore
from conftest import nb


def _controller(backend, tree, reports=None):
    store = TreeStore()
    store.load_root(tree)
    report = reports.append if reports is not None else None
    return store, ExpansionController(store, backend, report=report)


def test_expand_fetches_children_for_sentinel(backend):
    backend.children["/ws/Work"] = [nb("/ws/Work/n1", lazy=True)]
    store, expansion = _controller(backend, [nb("/ws/Work", lazy=True)])

    assert asyncio.run(expansion.expand("/ws/Work"))
    assert expansion.is_expanded("/ws/Work")
    assert store.find("/ws/Work/n1") is not None
    assert backend.calls_to("fetch_children") == [("/ws/Work",)]


def test_expand_loaded_or_leaf_does_not_fetch(backend):
    store, expansion = _controller(backend, [nb("/ws/A", nb("/ws/A/x")), nb("/ws/Leaf")])

    async def run():
        await expansion.expand("/ws/A")
        await expansion.expand("/ws/Leaf")

    asyncio.run(run())
    assert backend.count("fetch_children") == 0
    assert expansion.expanded == {"/ws/A", "/ws/Leaf"}


def test_expand_unknown_path_is_ignored(backend):
    _, expansion = _controller(backend, [nb("/ws/A", lazy=True)])
    assert not asyncio.run(expansion.expand("/ws/missing"))
    assert not expansion.expanded


def test_concurrent_expand_fetches_once(backend):
    backend.children["/ws/Work"] = [nb("/ws/Work/n1")]
    store, expansion = _controller(backend, [nb("/ws/Work", lazy=True)])

    async def run():
        backend.gates["fetch_children"] = asyncio.Event()
        first = asyncio.create_task(expansion.expand("/ws/Work"))
        await asyncio.sleep(0)
        assert expansion.is_loading("/ws/Work")
        second = asyncio.create_task(expansion.expand("/ws/Work"))
        await asyncio.sleep(0)
        assert not second.done()
        backend.gates["fetch_children"].set()
        return await first, await second

    assert asyncio.run(run()) == (True, True)
    assert backend.count("fetch_children") == 1
    assert not expansion.loading
    assert store.find("/ws/Work/n1") is not None


def test_failed_expand_collapses_and_reports(backend):
    backend.fail.add("fetch_children")
    reports = []
    store, expansion = _controller(backend, [nb("/ws/Work", lazy=True)], reports)

    assert not asyncio.run(expansion.expand("/ws/Work"))
    assert not expansion.is_expanded("/ws/Work")
    assert not expansion.loading
    assert len(store.find("/ws/Work").children) == 1
    assert reports and "Failed to load" in reports[0]

    backend.fail.clear()
    backend.children["/ws/Work"] = [nb("/ws/Work/n1")]
    assert asyncio.run(expansion.expand("/ws/Work"))
    assert store.find("/ws/Work/n1") is not None


def test_children_from_previous_tree_are_dropped(backend):
    backend.children["/ws/Work"] = [nb("/ws/Work/stale")]
    store, expansion = _controller(backend, [nb("/ws/Work", lazy=True)])

    async def run():
        backend.gates["fetch_children"] = asyncio.Event()
        pending = asyncio.create_task(expansion.expand("/ws/Work"))
        await asyncio.sleep(0)
        store.reset()
        store.load_root([nb("/ws/Work", lazy=True)])
        backend.gates["fetch_children"].set()
        return await pending

    assert not asyncio.run(run())
    assert store.find("/ws/Work/stale") is None


def test_toggle_and_collapse(backend):
    backend.children["/ws/A"] = []
    _, expansion = _controller(backend, [nb("/ws/A", lazy=True)])

    asyncio.run(expansion.toggle("/ws/A"))
    assert expansion.is_expanded("/ws/A")
    asyncio.run(expansion.toggle("/ws/A"))
    assert not expansion.is_expanded("/ws/A")


def test_restore_expands_parents_first(backend):
    backend.children["/ws/A"] = [nb("/ws/A/b", lazy=True)]
    backend.children["/ws/A/b"] = [nb("/ws/A/b/c")]
    store, expansion = _controller(backend, [nb("/ws/A", lazy=True)])

    asyncio.run(expansion.restore(["/ws/A/b", "/ws/A", "/ws/gone"]))
    assert expansion.expanded == {"/ws/A", "/ws/A/b"}
    assert store.find("/ws/A/b/c") is not None
