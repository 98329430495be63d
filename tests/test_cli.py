import socket

from azimuth.app import main


def test_find_open_port_falls_back_when_taken():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen()
        taken = s.getsockname()[1]
        port = main._find_open_port("127.0.0.1", taken)
    assert port != taken
    assert port > 0


def test_tree_command_lists_notebooks(tmp_path, capsys):
    (tmp_path / "Work").mkdir()
    (tmp_path / "Home").mkdir()
    assert main.main(["tree", "--workspace", str(tmp_path)]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out == ["+ Home", "+ Work"]


def test_search_command_prints_hits(tmp_path, capsys):
    (tmp_path / "a.md").write_text("a needle here", encoding="utf-8")
    assert main.main(["search", "needle", "--workspace", str(tmp_path)]) == 0
    out = capsys.readouterr().out
    assert "a.md (1): a needle here" in out
    assert main.main(["search", "absent", "--workspace", str(tmp_path)]) == 0
    assert "No matches" in capsys.readouterr().out
