"""Tests for selector evaluation."""

from reactive_kv._internal.selectors import select, select_collection


def test_dotted_path():
    value = {"a": {"b": {"c": 3}}}
    assert select(value, "a.b.c") == 3
    assert select(value, "a.b") == {"c": 3}


def test_path_through_list_index():
    value = {"items": [{"id": 1}, {"id": 2}]}
    assert select(value, "items.1.id") == 2
    assert select(value, ["items", 0, "id"]) == 1


def test_missing_path_is_none():
    value = {"a": {"b": 1}}
    assert select(value, "a.x.y") is None
    assert select(value, "a.b.c") is None
    assert select({"items": [1]}, "items.5") is None
    assert select(None, "a") is None


def test_numeric_mapping_keys():
    assert select({"accounts": {"42": "bob"}}, "accounts.42") == "bob"


def test_callable_selector():
    assert select({"a": 1, "b": 2}, lambda v: v["a"] + v["b"]) == 3


def test_select_collection():
    collection = {"report_1": {"title": "a"}, "report_2": {"title": "b", "x": 1}}
    assert select_collection(collection, "title") == {"report_1": "a", "report_2": "b"}
