import pytest

from azimuth.server.adapters import files


@pytest.fixture
def root(tmp_path):
    return tmp_path.resolve()


def test_list_notebooks_returns_sorted_folders_with_sentinels(root):
    (root / "beta").mkdir()
    (root / "Alpha").mkdir()
    (root / "note.md").write_text("x", encoding="utf-8")
    notebooks = files.list_notebooks(root)
    assert [nb["name"] for nb in notebooks] == ["Alpha", "beta"]
    alpha = notebooks[0]
    assert alpha["path"] == str(root / "Alpha")
    assert alpha["id"] == alpha["path"]
    assert alpha["children"] == [{"id": "", "name": "", "path": "", "children": []}]


def test_list_notebooks_skips_hidden_and_ignored_dirs(root):
    for name in (".git", "node_modules", "__pycache__", ".secret", "Notes"):
        (root / name).mkdir()
    assert [nb["name"] for nb in files.list_notebooks(root)] == ["Notes"]


def test_list_notebooks_of_subfolder(root):
    (root / "Work" / "Ideas").mkdir(parents=True)
    notebooks = files.list_notebooks(root, str(root / "Work"))
    assert [nb["path"] for nb in notebooks] == [str(root / "Work" / "Ideas")]


def test_list_notebooks_caps_results(root):
    for idx in range(files.MAX_NOTEBOOKS + 5):
        (root / f"nb{idx:03d}").mkdir()
    assert len(files.list_notebooks(root)) == files.MAX_NOTEBOOKS


def test_paths_outside_root_are_rejected(root):
    with pytest.raises(files.FileAccessError):
        files.list_notebooks(root, str(root.parent))
    with pytest.raises(files.FileAccessError):
        files.list_notes(root, str(root / ".." / "elsewhere"))


def test_create_notebook(root):
    created = files.create_notebook(root, str(root), " Ideas ")
    assert (root / "Ideas").is_dir()
    assert created["children"] == []
    with pytest.raises(files.FileAccessError):
        files.create_notebook(root, str(root), "a/b")


def test_import_folder_copies_tree(root, tmp_path_factory):
    source = tmp_path_factory.mktemp("outside") / "Recipes"
    (source / "Soups").mkdir(parents=True)
    (source / "bread.md").write_text("# Bread", encoding="utf-8")
    (source / "Soups" / "tomato.md").write_text("red", encoding="utf-8")

    imported = files.import_folder(root, str(root), str(source))

    assert imported["path"] == str(root / "Recipes")
    assert [c["name"] for c in imported["children"]] == ["Soups"]
    assert (root / "Recipes" / "Soups" / "tomato.md").read_text(encoding="utf-8") == "red"
    assert (source / "bread.md").exists()


def test_import_folder_keeps_existing_notebook(root, tmp_path_factory):
    source = tmp_path_factory.mktemp("outside") / "Work"
    source.mkdir()
    (source / "new.md").write_text("x", encoding="utf-8")
    (root / "Work").mkdir()
    imported = files.import_folder(root, str(root), str(source))
    assert imported["path"] == str(root / "Work")
    assert not (root / "Work" / "new.md").exists()


def test_import_folder_rejects_bad_sources(root):
    (root / "Work").mkdir()
    with pytest.raises(files.FileAccessError):
        files.import_folder(root, str(root), str(root / "missing"))
    with pytest.raises(files.FileAccessError):
        files.import_folder(root, str(root / "Work"), str(root))


def test_list_notes_reads_text_and_links_media(root):
    folder = root / "Work"
    folder.mkdir()
    (folder / "plan.md").write_text("# Plan", encoding="utf-8")
    (folder / "photo.png").write_bytes(b"\x89PNG")
    (folder / "clip.mp4").write_bytes(b"\x00")
    (folder / ".hidden.md").write_text("x", encoding="utf-8")
    (folder / "attachments").mkdir()
    notes = {n["id"]: n for n in files.list_notes(root, str(folder))}
    assert set(notes) == {"plan.md", "photo.png", "clip.mp4"}
    assert notes["plan.md"]["content"] == "# Plan"
    assert notes["plan.md"]["title"] == "plan"
    assert notes["plan.md"]["folder"] == str(folder)
    assert notes["photo.png"]["content"].startswith("![photo.png](asset://localhost/")
    assert 'type="video/mp4"' in notes["clip.mp4"]["content"]
    assert notes["plan.md"]["updated_at"].endswith("+00:00")


def test_list_notes_of_missing_folder_is_empty(root):
    assert files.list_notes(root, str(root / "missing")) == []


def test_save_and_read_note(root):
    files.save_note(root, str(root), "a.md", "hello")
    assert files.read_note(root, str(root), "a.md") == "hello"
    with pytest.raises(FileNotFoundError):
        files.save_note(root, str(root / "missing"), "a.md", "x")
    with pytest.raises(files.FileAccessError):
        files.save_note(root, str(root), "../escape.md", "x")


def test_rename_note(root):
    files.save_note(root, str(root), "a.md", "x")
    files.save_note(root, str(root), "b.md", "y")
    with pytest.raises(FileExistsError):
        files.rename_note(root, str(root), "a.md", "b.md")
    with pytest.raises(FileNotFoundError):
        files.rename_note(root, str(root), "missing.md", "c.md")
    files.rename_note(root, str(root), "a.md", "c.md")
    assert (root / "c.md").read_text(encoding="utf-8") == "x"


def test_delete_note_removes_attachments(root):
    files.save_note(root, str(root), "a.md", "x")
    files.save_attachment(root, str(root), "a.md", "pic.png", b"data")
    files.delete_note(root, str(root), "a.md")
    assert not (root / "a.md").exists()
    assert not (root / "a").exists()


def test_move_note_takes_attachments_along(root):
    (root / "Dest").mkdir()
    files.save_note(root, str(root), "a.md", "x")
    files.save_attachment(root, str(root), "a.md", "pic.png", b"data")
    files.move_note(root, str(root), str(root / "Dest"), "a.md")
    assert (root / "Dest" / "a.md").exists()
    assert (root / "Dest" / "a" / "pic.png").read_bytes() == b"data"
    with pytest.raises(FileNotFoundError):
        files.move_note(root, str(root), str(root / "Dest"), "a.md")


def test_move_notebook(root):
    (root / "Projects" / "Sub" / "Archive").mkdir(parents=True)
    (root / "Other").mkdir()
    destination = files.move_notebook(root, str(root / "Projects" / "Sub"), str(root / "Other"))
    assert destination == str(root / "Other" / "Sub")
    assert (root / "Other" / "Sub" / "Archive").is_dir()
    assert not (root / "Projects" / "Sub").exists()


def test_move_notebook_rejects_cycles_and_collisions(root):
    (root / "Projects" / "Sub" / "Archive").mkdir(parents=True)
    (root / "Other" / "Sub").mkdir(parents=True)
    sub = str(root / "Projects" / "Sub")
    with pytest.raises(files.FileAccessError):
        files.move_notebook(root, sub, str(root / "Projects" / "Sub" / "Archive"))
    with pytest.raises(files.FileAccessError):
        files.move_notebook(root, sub, sub)
    with pytest.raises(files.FileAccessError):
        files.move_notebook(root, str(root), str(root / "Other"))
    with pytest.raises(FileExistsError):
        files.move_notebook(root, sub, str(root / "Other"))
    with pytest.raises(FileNotFoundError):
        files.move_notebook(root, str(root / "Nope"), str(root / "Other"))


def test_attachments(root):
    files.save_note(root, str(root), "a.md", "x")
    saved = files.save_attachment(root, str(root), "a.md", "../pic.png", b"data")
    assert saved == str(root / "a" / "pic.png")
    assert files.list_attachments(root, str(root), "a.md") == ["pic.png"]
    assert files.list_attachments(root, str(root), "b.md") == []


def test_search_counts_matches_and_filename(root):
    (root / "Work").mkdir()
    (root / "Work" / "needle.md").write_text("a needle and another Needle", encoding="utf-8")
    (root / "Work" / "other.md").write_text("one needle", encoding="utf-8")
    (root / "Work" / "plain.md").write_text("nothing", encoding="utf-8")
    (root / ".git").mkdir()
    (root / ".git" / "needle.md").write_text("needle", encoding="utf-8")
    results = files.search_notes(root, str(root), "needle")
    assert [r["note_id"] for r in results] == ["needle.md", "other.md"]
    assert results[0]["match_count"] == 3
    assert results[0]["notebook_path"] == str(root / "Work")
    assert results[0]["notebook_name"] == "Work"
    assert results[0]["note_title"] == "needle"
    assert files.search_notes(root, str(root), "  ") == []


def test_search_snippet_is_trimmed(root):
    text = "x" * 200 + " needle " + "y" * 200
    (root / "long.md").write_text(text, encoding="utf-8")
    snippet = files.search_notes(root, str(root), "needle")[0]["snippet"]
    assert snippet.startswith("...") and snippet.endswith("...")
    assert "needle" in snippet
    assert len(snippet) <= len("needle") + 2 * files.SNIPPET_RADIUS + 6
