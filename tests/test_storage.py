"""Local storage tests."""

from storage import LocalStorage


def test_values_survive_reload(storage_path):
    storage = LocalStorage(storage_path)
    storage.set_json("teacherpoli_user", {"name": "ana"})
    storage.set_item("flag", "true")

    reloaded = LocalStorage(storage_path)

    assert reloaded.get_json("teacherpoli_user") == {"name": "ana"}
    assert reloaded.get_item("flag") == "true"
    assert sorted(reloaded.keys()) == ["flag", "teacherpoli_user"]


def test_remove_item(storage_path):
    storage = LocalStorage(storage_path)
    storage.set_json("key", [1, 2])
    storage.remove_item("key")
    storage.remove_item("never-set")

    assert LocalStorage(storage_path).get_item("key") is None


def test_unreadable_value_returns_default():
    storage = LocalStorage()
    storage.set_item("broken", "{oops")

    assert storage.get_json("broken", []) == []
    assert storage.get_json("missing", "fallback") == "fallback"


def test_corrupt_file_starts_empty(storage_path):
    storage_path.write_text("not json", encoding="utf-8")

    storage = LocalStorage(storage_path)

    assert storage.keys() == []
    storage.set_json("key", True)
    assert LocalStorage(storage_path).get_json("key") is True


def test_memory_storage_writes_no_file(tmp_path):
    storage = LocalStorage()
    storage.set_json("key", 1)

    assert storage.path is None
    assert list(tmp_path.iterdir()) == []
