from __future__ import annotations

import pytest

from helpers import write_item
from rltp.errors import ItemError, ProtocolViolation
from rltp.items import ItemRegistry, LineSink, LineSource, directory_sinks


def test_source_counts_and_rewinds(tmp_path):
    path = tmp_path / "a.txt"
    path.write_text("one\ntwo\r\nthree", encoding="utf-8")
    src = LineSource.open(path)

    assert src.name == "a.txt"
    assert src.total_lines == 3
    assert src.read_line() == "one"
    src.rewind()
    assert list(src) == ["one", "two\r", "three"]
    assert src.read_line() is None
    src.close()


def test_missing_item(tmp_path):
    with pytest.raises(ItemError, match="cannot open"):
        LineSource.open(tmp_path / "nope.txt")


def test_item_name_bounds(tmp_path):
    with pytest.raises(ItemError):
        LineSource.open(write_item(tmp_path, "n" * 32, ["x"]))
    with pytest.raises(ItemError, match="reserved"):
        LineSource.open(write_item(tmp_path, "END", ["x"]))


def test_line_too_long(tmp_path):
    path = write_item(tmp_path, "a.txt", ["ok", "y" * 256])
    with pytest.raises(ItemError, match=":2:"):
        LineSource.open(path)


def test_sink_appends_lines(tmp_path):
    sink = LineSink.open(tmp_path / "out.txt")
    sink.append("a")
    sink.append("")
    sink.flush()
    assert sink.lines_written == 2
    sink.close()
    assert sink.closed
    assert (tmp_path / "out.txt").read_text(encoding="utf-8") == "a\n\n"


@pytest.mark.parametrize("name", ["../evil.txt", "a/b.txt", "..", "a\\b"])
def test_directory_sinks_stay_inside(tmp_path, name):
    with pytest.raises(ProtocolViolation):
        directory_sinks(tmp_path)(name)


def test_registry_first_seen_order_and_bound(tmp_path):
    registry = ItemRegistry(directory_sinks(tmp_path), max_items=2)
    b = registry.resolve("b.txt")
    registry.resolve("a.txt")

    assert registry.resolve("b.txt") is b
    assert registry.names == ["b.txt", "a.txt"]
    assert "a.txt" in registry
    with pytest.raises(ProtocolViolation):
        registry.resolve("c.txt")

    registry.close()
    assert b.closed


def test_line_with_nul_is_rejected(tmp_path):
    path = tmp_path / "a.txt"
    path.write_bytes(b"keep\x00this\nsecond\n")
    with pytest.raises(ItemError, match=":1:"):
        LineSource.open(path)


def test_lone_carriage_return_stays_in_line(tmp_path):
    path = tmp_path / "a.txt"
    path.write_bytes(b"a\rb\nc\n")
    src = LineSource.open(path)
    assert src.total_lines == 2
    assert list(src) == ["a\rb", "c"]
    src.close()


@pytest.mark.parametrize("name", ["a\\b.txt", "a/b.txt", "a\x00b"])
def test_item_name_rejects_path_separators_and_nul(tmp_path, name):
    path = write_item(tmp_path, "a.txt", ["x"])
    with pytest.raises(ItemError, match="may not contain"):
        LineSource.open(path, name=name)
