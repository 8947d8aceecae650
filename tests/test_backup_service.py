import json
import threading
from types import SimpleNamespace

import pytest

from backup.api import BackupService, OperationHandle
from backup.errors import NothingSelectedError, OperationInProgressError
from backup.progress import DONE
from core.settings import merge_defaults


def _service(tmp_path, **backup_settings):
    settings = merge_defaults({"backup": backup_settings})
    return BackupService(working_dir=tmp_path / "work", settings=settings)


def _make_tree(tmp_path):
    root = tmp_path / "alice" / "a"
    (root / "c").mkdir(parents=True)
    (root / "b.txt").write_text("bee", encoding="utf-8")
    (root / "c" / "d.txt").write_text("dee", encoding="utf-8")
    return root


def test_start_backup_reports_success_through_handle(tmp_path):
    root = _make_tree(tmp_path)
    service = _service(tmp_path)

    handle = service.start_backup([root], tmp_path / "out.tar")
    outcome = handle.wait(timeout=10)

    assert outcome.ok
    assert outcome.value.archive_path == tmp_path / "out.tar"
    assert handle.status == f"Backup created:\n{tmp_path / 'out.tar'}"
    assert handle.progress.get() == DONE
    assert handle.poll() is outcome


def test_start_backup_failure_becomes_status_text(tmp_path):
    service = _service(tmp_path)

    handle = service.start_backup([], tmp_path / "out.tar")
    outcome = handle.wait(timeout=10)

    assert not outcome.ok
    assert isinstance(outcome.error, NothingSelectedError)
    assert handle.status == "Backup failed: Nothing selected."
    assert handle.progress.done


def test_backup_events_land_in_jsonl_log(tmp_path):
    root = _make_tree(tmp_path)
    service = _service(tmp_path)

    service.start_backup([root], tmp_path / "out.tar").wait(timeout=10)

    lines = service.logger.log_path.read_text(encoding="utf-8").splitlines()
    events = [json.loads(line)["event"] for line in lines]
    assert events == ["backup_start", "backup_complete"]


def test_open_then_restore_selected_paths(tmp_path):
    root = _make_tree(tmp_path)
    service = _service(tmp_path)
    archive = service.start_backup([root], tmp_path / "out.tar").wait(timeout=10).value.archive_path
    (root / "b.txt").unlink()
    (root / "c" / "d.txt").unlink()

    opened = service.open_archive_for_restore(archive).wait(timeout=10)
    assert opened.ok
    view = opened.value
    view.tree.find("a/b.txt").set_checked(False)

    from backup.reader import collect_paths

    handle = service.start_restore(archive, collect_paths(view.tree), home=tmp_path)
    outcome = handle.wait(timeout=10)

    assert outcome.ok
    assert (root / "c" / "d.txt").exists()
    assert not (root / "b.txt").exists()
    assert handle.status == "Restore complete: 2 item(s) restored"


def test_open_invalid_archive_fails_with_message(tmp_path):
    bogus = tmp_path / "bogus.tar"
    bogus.write_bytes(b"not an archive" * 100)
    service = _service(tmp_path)

    handle = service.open_archive_for_restore(bogus)
    outcome = handle.wait(timeout=10)

    assert not outcome.ok
    assert handle.status.startswith("Failed: ")


def test_poll_does_not_block_before_outcome():
    handle = OperationHandle("test", status="Working")
    release = threading.Event()

    handle.start(lambda op: release.wait(10), lambda value: "done", "failed")
    assert handle.poll() is None
    assert handle.status == "Working"

    release.set()
    assert handle.wait(timeout=10).message == "done"
    assert handle.status == "done"


def test_unexpected_errors_are_delivered_not_raised():
    handle = OperationHandle("test")

    def work(op):
        raise KeyError("boom")

    handle.start(work, lambda value: "done", "Crashed")
    outcome = handle.wait(timeout=10)

    assert not outcome.ok
    assert isinstance(outcome.error, KeyError)
    assert handle.status.startswith("Crashed: ")


def test_exclusive_mode_refuses_second_backup(tmp_path, monkeypatch):
    service = _service(tmp_path, exclusive_operations=True)
    release = threading.Event()

    import backup.api as api_module

    def blocking(selection, destination, **kwargs):
        release.wait(10)
        return SimpleNamespace(archive_path=destination)

    monkeypatch.setattr(api_module, "create_backup", blocking)

    first = service.start_backup(["/anything"], tmp_path / "out.tar")
    with pytest.raises(OperationInProgressError):
        service.start_backup(["/anything"], tmp_path / "out.tar")

    release.set()
    first.wait(timeout=10)
    second = service.start_backup(["/anything"], tmp_path / "out.tar")
    assert second.wait(timeout=10).ok


def test_concurrent_operations_allowed_by_default(tmp_path, monkeypatch):
    service = _service(tmp_path)
    release = threading.Event()

    import backup.api as api_module

    def blocking(selection, destination, **kwargs):
        release.wait(10)
        return SimpleNamespace(archive_path=destination)

    monkeypatch.setattr(api_module, "create_backup", blocking)

    first = service.start_backup(["/anything"], tmp_path / "one.tar")
    second = service.start_backup(["/anything"], tmp_path / "two.tar")
    release.set()

    assert first.wait(timeout=10).ok
    assert second.wait(timeout=10).ok


def test_load_template_uses_configured_home(tmp_path):
    home = tmp_path / "bob"
    (home / "Docs").mkdir(parents=True)
    settings = merge_defaults({"restore": {"home": str(home)}})
    service = BackupService(working_dir=tmp_path / "work", settings=settings)
    template = service.save_template(["/Users/alice/Docs", "/Users/alice/Gone"], tmp_path / "t.json")

    loaded = service.load_template(template)

    assert loaded.valid == [str(home / "Docs")]
    assert loaded.skipped == ["/Users/alice/Gone"]
