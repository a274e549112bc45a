from pathlib import Path

from ecoroute.persistence.filesystem import FileStorage


def test_file_storage_creates_its_root(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path / "cache" / "routes")

    assert storage.root.is_dir()
    assert storage.path_for("route_abc") == storage.root / "route_abc.json"


def test_file_storage_round_trips_json_documents(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    path = storage.path_for("route_abc")

    storage.write_json(path, {"key": "a-b-truck", "polyline": [[1.0, 2.0]]}, indent=2)

    assert path.read_text(encoding="utf-8") == '{\n  "key": "a-b-truck",\n  "polyline": [\n    [\n      1.0,\n      2.0\n    ]\n  ]\n}'
    assert storage.read_json(path) == {"key": "a-b-truck", "polyline": [[1.0, 2.0]]}
    assert not path.with_suffix(".tmp").exists()


def test_file_storage_tolerates_missing_and_corrupt_documents(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    corrupt = storage.path_for("broken")
    corrupt.write_text("{not json", encoding="utf-8")

    assert storage.read_json(storage.path_for("missing")) is None
    assert storage.read_json(corrupt) is None
    assert storage.delete(corrupt) is True
    assert storage.delete(corrupt) is False


def test_file_storage_lists_documents_in_name_order(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    for name in ("b", "a", "c"):
        storage.write_json(storage.path_for(name), {})
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    assert [path.stem for path in storage.iter_documents()] == ["a", "b", "c"]
