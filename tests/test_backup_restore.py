import io
import os
import shutil
import sys
import tarfile

import pytest

from backup.create import create_backup
from backup.errors import BackupRestoreError, InvalidFingerprintError
from backup.manifest import FINGERPRINT_NAME, encode
from backup.progress import DONE, Progress
from backup.restore import plan_restore, restore_backup, selection_filter
from backup.types import ArchiveEntry


class StubLogger:
    def __init__(self) -> None:
        self.events = []

    def debug(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("debug", event, extra))

    def info(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("info", event, extra))

    def warning(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("warning", event, extra))

    def error(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("error", event, extra))

    def event(self, *, event: str, phase: str, ok: bool, **extra):  # pragma: no cover - recorder
        self.events.append(("event", event, phase, ok, extra))


def _make_tree(tmp_path):
    root = tmp_path / "alice" / "a"
    (root / "c").mkdir(parents=True)
    (root / "b.txt").write_text("bee", encoding="utf-8")
    (root / "c" / "d.txt").write_text("dee", encoding="utf-8")
    notes = tmp_path / "alice" / "Notes.txt"
    notes.write_text("remember", encoding="utf-8")
    return root, notes


def _entries(*names):
    return [ArchiveEntry(name=name.rstrip("/"), is_dir=name.endswith("/")) for name in names]


def test_round_trip_restores_original_locations(tmp_path):
    root, notes = _make_tree(tmp_path)
    os.utime(notes, (1_600_000_000, 1_600_000_000))
    archive = create_backup([root, notes], tmp_path / "backup.tar", logger=StubLogger()).archive_path
    shutil.rmtree(root)
    notes.unlink()

    result = restore_backup(archive, home=tmp_path / "elsewhere", logger=StubLogger())

    assert (root / "b.txt").read_text(encoding="utf-8") == "bee"
    assert (root / "c" / "d.txt").read_text(encoding="utf-8") == "dee"
    assert notes.read_text(encoding="utf-8") == "remember"
    assert int(notes.stat().st_mtime) == 1_600_000_000
    assert len(result["restored"]) == 4
    assert result["unresolved"] == []


def test_restore_overwrites_existing_files(tmp_path):
    root, notes = _make_tree(tmp_path)
    archive = create_backup([notes], tmp_path / "backup.tar", logger=StubLogger()).archive_path
    notes.write_text("changed since", encoding="utf-8")

    restore_backup(archive, home=tmp_path, logger=StubLogger())

    assert notes.read_text(encoding="utf-8") == "remember"


def test_selective_restore_only_writes_chosen_subtree(tmp_path):
    root, notes = _make_tree(tmp_path)
    archive = create_backup([root, notes], tmp_path / "backup.tar", logger=StubLogger()).archive_path
    shutil.rmtree(root)
    notes.unlink()

    result = restore_backup(archive, home=tmp_path, logger=StubLogger(), selection={"a/c"})

    assert (root / "c" / "d.txt").exists()
    assert not (root / "b.txt").exists()
    assert not notes.exists()
    assert "a/b.txt" in result["skipped"]
    assert "Notes.txt" in result["skipped"]


def test_plan_remaps_windows_profile_onto_new_home():
    key_map = {"Projects": r"C:\Users\alice\Projects", "Notes.txt": r"C:\Users\alice\Notes.txt"}

    plan = plan_restore(
        _entries("Projects/src/", "Projects/src/main.py", "Notes.txt"),
        key_map,
        r"C:\Users\bob",
    )

    assert [target.destination for target in plan.targets] == [
        r"C:\Users\bob\Projects\src",
        r"C:\Users\bob\Projects\src\main.py",
        r"C:\Users\bob\Notes.txt",
    ]


def test_plan_keeps_paths_outside_profiles():
    plan = plan_restore(_entries("Media/song.mp3"), {"Media": r"D:\Media"}, r"C:\Users\bob")

    assert plan.targets[0].destination == r"D:\Media\song.mp3"


def test_plan_reports_entries_without_recorded_location():
    plan = plan_restore(_entries("a/b.txt", "stray.txt"), {"a": "/srv/a"}, "/home/bob")

    assert [target.destination for target in plan.targets] == ["/srv/a/b.txt"]
    assert plan.unresolved == ["stray.txt"]


def test_restore_skips_unresolved_entries_and_reports_them(tmp_path):
    path = tmp_path / "x.tar"
    target_dir = tmp_path / "dest"
    with tarfile.open(path, "w") as archive:
        manifest = encode([str(target_dir / "kept.txt")]).encode("utf-8")
        info = tarfile.TarInfo(FINGERPRINT_NAME)
        info.size = len(manifest)
        archive.addfile(info, io.BytesIO(manifest))
        for name in ("kept.txt", "stray.txt"):
            info = tarfile.TarInfo(name)
            info.size = 1
            archive.addfile(info, io.BytesIO(b"x"))
    logger = StubLogger()

    result = restore_backup(path, home=tmp_path, logger=logger)

    assert (target_dir / "kept.txt").exists()
    assert result["unresolved"] == ["stray.txt"]
    assert ("warning", "restore_unresolved", {"archive": str(path), "entry": "stray.txt"}) in logger.events


def test_plan_rejects_unsafe_entry_names():
    plan = plan_restore(
        _entries("a/../../etc/passwd", "/abs/file.txt", r"C:\evil.txt", "a/ok.txt"),
        {"a": "/srv/a", "abs": "/srv/abs"},
        "/home/bob",
    )

    assert plan.rejected == ["a/../../etc/passwd", "/abs/file.txt", r"C:\evil.txt"]
    assert [target.destination for target in plan.targets] == ["/srv/a/ok.txt"]


def test_restore_rejects_links(tmp_path):
    path = tmp_path / "x.tar"
    with tarfile.open(path, "w") as archive:
        manifest = encode([str(tmp_path / "dest" / "a")]).encode("utf-8")
        info = tarfile.TarInfo(FINGERPRINT_NAME)
        info.size = len(manifest)
        archive.addfile(info, io.BytesIO(manifest))
        link = tarfile.TarInfo("a/link")
        link.type = tarfile.SYMTYPE
        link.linkname = "/etc/passwd"
        archive.addfile(link)

    result = restore_backup(path, home=tmp_path, logger=StubLogger())

    assert result["rejected"] == ["a/link"]
    assert not (tmp_path / "dest" / "a" / "link").exists()


def test_invalid_archive_writes_nothing(tmp_path):
    path = tmp_path / "plain.tar"
    with tarfile.open(path, "w") as archive:
        info = tarfile.TarInfo("a.txt")
        info.size = 1
        archive.addfile(info, io.BytesIO(b"a"))
    before = sorted(p.name for p in tmp_path.iterdir())

    with pytest.raises(InvalidFingerprintError):
        restore_backup(path, home=tmp_path, logger=StubLogger())

    assert sorted(p.name for p in tmp_path.iterdir()) == before


def test_restore_failure_stops_with_path(tmp_path, monkeypatch):
    root, notes = _make_tree(tmp_path)
    archive = create_backup([root], tmp_path / "backup.tar", logger=StubLogger()).archive_path
    shutil.rmtree(root)
    logger = StubLogger()
    calls = []

    import backup.restore as restore_module

    original = restore_module._write_target

    def flaky(archive_handle, target):
        calls.append(target.destination)
        if len(calls) == 2:
            raise PermissionError(13, "Permission denied", target.destination)
        return original(archive_handle, target)

    monkeypatch.setattr(restore_module, "_write_target", flaky)
    progress = Progress()

    with pytest.raises(BackupRestoreError) as excinfo:
        restore_backup(archive, home=tmp_path, logger=logger, progress=progress)

    assert excinfo.value.path == calls[1]
    assert len(calls) == 2
    assert not progress.done
    assert logger.events[-1][1] == "restore_failed"


def test_restore_progress_ends_with_done(tmp_path):
    root, notes = _make_tree(tmp_path)
    archive = create_backup([root, notes], tmp_path / "backup.tar", logger=StubLogger()).archive_path
    progress = Progress()
    seen = []
    progress.subscribe(seen.append)

    restore_backup(archive, home=tmp_path, logger=StubLogger(), progress=progress)

    assert seen == sorted(seen)
    assert seen[-2:] == [100, DONE]


def test_selection_filter_keeps_ancestors_and_descendants():
    included = selection_filter({"a/c"})

    assert included("a")
    assert included("a/c")
    assert included("a/c/d.txt")
    assert not included("a/b.txt")
    assert not included("ab/c")
    assert selection_filter(None)("anything")


@pytest.mark.skipif(sys.platform != "linux", reason="needs a filesystem that accepts arbitrary name bytes")
def test_round_trip_with_undecodable_file_name(tmp_path):
    odd = tmp_path / os.fsdecode(b"bad\xff.txt")
    odd.write_bytes(b"payload")
    archive = create_backup([odd], tmp_path / "backup.tar", logger=StubLogger()).archive_path
    odd.unlink()

    result = restore_backup(archive, home=tmp_path, logger=StubLogger())

    assert result["unresolved"] == []
    assert result["restored"] == [str(odd)]
    assert odd.read_bytes() == b"payload"
