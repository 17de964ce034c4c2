"""
Tests for directory tree generation and rendering
"""

import os
import sys
from pathlib import Path

import pytest

from directory_tree import (
    EMPTY_TREE_MESSAGE,
    DirectoryNode,
    ListingUnavailable,
    build_tree,
    render_tree_html,
)


def names(nodes):
    return [node.name for node in nodes]


def test_directories_before_files_then_alphabetical(tmp_path: Path):
    (tmp_path / "B").mkdir()
    (tmp_path / "A").mkdir()
    (tmp_path / "c").write_text("c")
    (tmp_path / "a.txt").write_text("a")
    (tmp_path / "Zeta.txt").write_text("z")

    tree = build_tree(tmp_path)

    assert names(tree) == ["A", "B", "a.txt", "c", "Zeta.txt"]
    assert [node.type for node in tree] == ["directory", "directory", "file", "file", "file"]


def test_nested_paths_and_urls(tmp_path: Path):
    (tmp_path / "my docs" / "deep").mkdir(parents=True)
    (tmp_path / "my docs" / "deep" / "100%.txt").write_text("x")

    tree = build_tree(tmp_path, prefix="share/")

    docs = tree[0]
    deep = docs.children[0]
    leaf = deep.children[0]
    assert docs.path == "share/my docs"
    assert leaf.path == "share/my docs/deep/100%.txt"
    assert leaf.url == "share/my%20docs/deep/100%25.txt"
    assert leaf.children is None


def test_empty_directory(tmp_path: Path):
    assert build_tree(tmp_path) == []


def test_missing_root_is_unavailable(tmp_path: Path):
    with pytest.raises(ListingUnavailable):
        build_tree(tmp_path / "missing")


def test_depth_limit(tmp_path: Path):
    (tmp_path / "one" / "two" / "three").mkdir(parents=True)

    shallow = build_tree(tmp_path, max_depth=1)
    two_levels = build_tree(tmp_path, max_depth=2)

    assert names(shallow) == ["one"]
    assert shallow[0].children == []
    assert names(two_levels[0].children) == ["two"]
    assert two_levels[0].children[0].children == []


def test_symlink_loop_terminates(tmp_path: Path):
    (tmp_path / "a" / "b").mkdir(parents=True)
    os.symlink(tmp_path, tmp_path / "a" / "b" / "back-to-top")
    os.symlink(tmp_path / "a", tmp_path / "a" / "self")

    tree = build_tree(tmp_path)

    a = tree[0]
    assert names(a.children) == ["b", "self"]
    b, self_link = a.children
    assert b.children[0].name == "back-to-top"
    assert b.children[0].children == []
    assert self_link.children == []


def test_same_directory_reachable_twice_is_listed_twice(tmp_path: Path):
    (tmp_path / "real").mkdir()
    (tmp_path / "real" / "f.txt").write_text("f")
    os.symlink(tmp_path / "real", tmp_path / "alias")

    tree = build_tree(tmp_path)

    assert names(tree) == ["alias", "real"]
    assert names(tree[0].children) == ["f.txt"]
    assert names(tree[1].children) == ["f.txt"]


@pytest.mark.skipif(hasattr(os, "geteuid") and os.geteuid() == 0, reason="root ignores permissions")
def test_unreadable_subdirectory_is_skipped(tmp_path: Path):
    locked = tmp_path / "locked"
    locked.mkdir()
    (locked / "hidden.txt").write_text("h")
    (tmp_path / "open.txt").write_text("o")
    locked.chmod(0)
    try:
        tree = build_tree(tmp_path)
    finally:
        locked.chmod(0o755)

    assert names(tree) == ["locked", "open.txt"]
    assert tree[0].children == []


def test_render_empty_tree():
    assert EMPTY_TREE_MESSAGE in render_tree_html([])


def test_render_connectors(tmp_path: Path):
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "a.txt").write_text("a")
    (tmp_path / "docs" / "b.txt").write_text("b")
    (tmp_path / "z.txt").write_text("z")

    rendered = render_tree_html(build_tree(tmp_path))

    assert rendered.startswith('<pre class="tree">')
    lines = rendered[len('<pre class="tree">'):-len("</pre>")].split("\n")
    assert lines == [
        '├── <a class="dir" href="/docs/">docs/</a>',
        '│   ├── <a class="file" href="/docs/a.txt">a.txt</a>',
        '│   └── <a class="file" href="/docs/b.txt">b.txt</a>',
        '└── <a class="file" href="/z.txt">z.txt</a>',
    ]


def test_render_escapes_names():
    node = DirectoryNode(name="<b>&.txt", path="<b>&.txt", url="%3Cb%3E%26.txt", type="file")

    rendered = render_tree_html([node])

    assert "&lt;b&gt;&amp;.txt" in rendered
    assert "<b>" not in rendered


@pytest.mark.skipif(sys.platform != "linux", reason="needs a filesystem that accepts arbitrary bytes")
def test_undecodable_name_does_not_break_listing(tmp_path: Path):
    (tmp_path / "good.txt").write_text("g")
    with open(os.path.join(os.fsencode(tmp_path), b"caf\xe9.txt"), "wb") as f:
        f.write(b"x")

    tree = build_tree(tmp_path, prefix="docs")

    assert names(tree) == ["caf\ufffd.txt", "good.txt"]
    assert tree[0].path == "docs/caf\ufffd.txt"
    assert tree[0].url == "docs/caf%E9.txt"
    assert 'href="/docs/caf%E9.txt"' in render_tree_html(tree)
