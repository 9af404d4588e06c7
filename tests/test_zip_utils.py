import stat
import zipfile
from pathlib import Path

import pytest

from zipview_backend.errors import Internal, InvalidArgument
from zipview_backend.zip_utils import ArchiveImporter, archive_base_name


def _root_names(settings):
    return sorted(p.name for p in settings.root.iterdir())


@pytest.fixture
def importer(settings):
    return ArchiveImporter(settings)


@pytest.fixture
def frozen_clock(monkeypatch):
    monkeypatch.setattr("zipview_backend.zip_utils._now_millis", lambda: 1700000000000)


@pytest.mark.parametrize(
    "original, expected",
    [
        ("project.zip", "project"),
        ("my.site.ZIP", "my.site"),
        ("C:\\Users\\me\\photos.zip", "photos"),
        ("../../evil.zip", "evil"),
        ("", "archive"),
        (".zip", "archive"),
        ("a..b.zip", "a.b"),
        ("evil\x00name.zip", "archive"),
    ],
)
def test_archive_base_name(original, expected):
    assert archive_base_name(original) == expected


def test_single_wrapper_folder_is_flattened(importer, settings, make_zip, frozen_clock):
    archive = make_zip({"project/": None, "project/README.md": "# hi"})

    result = importer.import_archive(archive, "upload.zip")

    assert result.workspace_name == "project-1700000000000"
    assert [n.name for n in result.tree] == ["README.md"]
    assert result.tree[0].path == "project-1700000000000/README.md"
    assert _root_names(settings) == ["project-1700000000000"]
    assert (settings.root / "project-1700000000000" / "README.md").read_text() == "# hi"


def test_wrapper_without_directory_entry_is_flattened(importer, settings, make_zip, frozen_clock):
    archive = make_zip({"site/index.html": "<p>", "site/css/app.css": "body{}"})

    result = importer.import_archive(archive, "bundle.zip")

    assert result.workspace_name == "site-1700000000000"
    assert [n.name for n in result.tree] == ["css", "index.html"]
    assert _root_names(settings) == ["site-1700000000000"]


def test_wrapper_named_like_archive(importer, settings, make_zip, frozen_clock):
    archive = make_zip({"project/README.md": "x"})

    result = importer.import_archive(archive, "project.zip")

    assert result.workspace_name == "project-1700000000000"
    assert [n.name for n in result.tree] == ["README.md"]
    assert _root_names(settings) == ["project-1700000000000"]


def test_two_top_level_files_not_flattened(importer, settings, make_zip, frozen_clock):
    archive = make_zip({"a.txt": "a", "b.txt": "b"})

    result = importer.import_archive(archive, "notes.zip")

    assert result.workspace_name == "notes-1700000000000"
    assert [n.name for n in result.tree] == ["a.txt", "b.txt"]
    assert result.tree[0].path == "notes-1700000000000/a.txt"


def test_single_top_level_file_not_flattened(importer, settings, make_zip, frozen_clock):
    archive = make_zip({"only.txt": "x"})

    result = importer.import_archive(archive, "one.zip")

    assert result.workspace_name == "one-1700000000000"
    assert [n.name for n in result.tree] == ["only.txt"]


def test_nested_structure_preserved(importer, settings, make_zip, frozen_clock):
    archive = make_zip({"src/app/main.py": "print()", "docs/guide.md": "g"})

    result = importer.import_archive(archive, "repo.zip")

    ws = settings.root / result.workspace_name
    assert (ws / "src" / "app" / "main.py").read_text() == "print()"
    assert (ws / "docs" / "guide.md").read_text() == "g"
    assert [n.name for n in result.tree] == ["docs", "src"]


def test_uploaded_archive_removed_after_success(importer, make_zip):
    archive = make_zip({"a.txt": "a"})
    importer.import_archive(archive, "a.zip")
    assert not archive.exists()


def test_same_name_same_millisecond_does_not_merge(importer, settings, make_zip, frozen_clock):
    first = importer.import_archive(make_zip({"a.txt": "1", "b.txt": "1"}, "one.bin"), "dup.zip")
    second = importer.import_archive(make_zip({"c.txt": "2", "d.txt": "2"}, "two.bin"), "dup.zip")

    assert first.workspace_name == "dup-1700000000000"
    assert second.workspace_name.startswith("dup-1700000000000-")
    assert [n.name for n in second.tree] == ["c.txt", "d.txt"]


@pytest.mark.parametrize(
    "bad_name",
    [
        "../escape.txt",
        "ok/../../escape.txt",
        "/abs/escape.txt",
        "..\\escape.txt",
        "C:/escape.txt",
        "a..b.txt",
        "w..x/f.txt",
        "%2e%2e/f",
        "x/%2E./y",
    ],
)
def test_traversal_member_rejected_without_writes(importer, settings, make_zip, tmp_path, bad_name):
    archive = make_zip({"fine.txt": "ok", bad_name: "pwned"})

    with pytest.raises(InvalidArgument):
        importer.import_archive(archive, "evil.zip")

    assert _root_names(settings) == []
    assert not (tmp_path / "escape.txt").exists()
    assert not (settings.root.parent / "escape.txt").exists()


def _symlink_zip(path, link_name, target):
    with zipfile.ZipFile(path, "w") as zf:
        info = zipfile.ZipInfo(link_name)
        info.external_attr = (stat.S_IFLNK | 0o777) << 16
        zf.writestr(info, target)
        zf.writestr("keep.txt", "k")
    return path


def test_escaping_symlink_member_rejected(importer, settings, tmp_path):
    archive = _symlink_zip(tmp_path / "link.bin", "link", "../../etc/passwd")

    with pytest.raises(InvalidArgument):
        importer.import_archive(archive, "links.zip")
    assert _root_names(settings) == []


def test_internal_symlink_member_written_as_file(importer, settings, tmp_path):
    archive = _symlink_zip(tmp_path / "link.bin", "link", "keep.txt")

    result = importer.import_archive(archive, "links.zip")

    link = settings.root / result.workspace_name / "link"
    assert not link.is_symlink()
    assert link.read_text() == "keep.txt"


def test_corrupt_archive_is_internal_and_leaves_root_unchanged(importer, settings, tmp_path):
    archive = tmp_path / "corrupt.bin"
    archive.write_bytes(b"this is not a zip")

    with pytest.raises(Internal):
        importer.import_archive(archive, "corrupt.zip")
    assert _root_names(settings) == []


def test_failure_mid_extraction_removes_partial_workspace(importer, settings, make_zip, monkeypatch):
    archive = make_zip({"a.txt": "a", "b.txt": "b"})
    calls = {"n": 0}

    import zipview_backend.zip_utils as zu

    real_extract = zu._extract_member

    def flaky(zf, info, dest):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OSError("disk full")
        real_extract(zf, info, dest)

    monkeypatch.setattr(zu, "_extract_member", flaky)

    with pytest.raises(Internal) as excinfo:
        importer.import_archive(archive, "partial.zip")
    assert str(settings.root) not in excinfo.value.message
    assert _root_names(settings) == []


def test_empty_archive_gives_empty_workspace(importer, settings, make_zip):
    result = importer.import_archive(make_zip({}), "empty.zip")
    assert result.tree == []
    assert (settings.root / result.workspace_name).is_dir()


def test_flatten_target_taken_gets_suffix(importer, settings, make_zip, frozen_clock):
    existing = settings.root / "project-1700000000000"
    existing.mkdir()
    (existing / "keep.txt").write_text("mine")
    archive = make_zip({"project/README.md": "# hi"})

    result = importer.import_archive(archive, "upload.zip")

    assert result.workspace_name.startswith("project-1700000000000-")
    assert [n.name for n in result.tree] == ["README.md"]
    assert sorted(p.name for p in existing.iterdir()) == ["keep.txt"]
    assert _root_names(settings) == sorted(["project-1700000000000", result.workspace_name])


def test_failed_flatten_move_leaves_root_unchanged(importer, settings, make_zip, monkeypatch):
    archive = make_zip({"project/README.md": "# hi"})

    def broken_rename(self, target):
        raise OSError("rename failed")

    monkeypatch.setattr(Path, "rename", broken_rename)

    with pytest.raises(Internal):
        importer.import_archive(archive, "upload.zip")
    assert _root_names(settings) == []
    assert archive.exists()


def test_failed_cleanup_after_move_leaves_root_unchanged(importer, settings, make_zip, monkeypatch):
    archive = make_zip({"project/README.md": "# hi"})

    def broken_rmdir(self):
        raise OSError("rmdir failed")

    monkeypatch.setattr(Path, "rmdir", broken_rmdir)

    with pytest.raises(Internal):
        importer.import_archive(archive, "upload.zip")
    assert _root_names(settings) == []
