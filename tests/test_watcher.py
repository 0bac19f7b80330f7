"""Tests for the save directory watcher."""

import queue

from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from gmr_sync.core.watcher import SaveFileHandler, SaveWatcher

from conftest import wait_for


def drain(q):
    items = []
    while not q.empty():
        items.append(q.get_nowait())
    return items


class TestSaveFileHandler:

    def test_created_save_is_queued(self, save_dir):
        new_files = queue.Queue()
        handler = SaveFileHandler(new_files)

        handler.dispatch(FileCreatedEvent(str(save_dir / "Casimir III_0028 BC-2320.Civ5Save")))

        assert drain(new_files) == ["Casimir III_0028 BC-2320.Civ5Save"]

    def test_moved_save_uses_destination(self, save_dir):
        new_files = queue.Queue()
        handler = SaveFileHandler(new_files)

        handler.dispatch(FileMovedEvent(
            str(save_dir / "tmp1234.tmp"),
            str(save_dir / "Harald_0029 AD-1000.Civ5Save"),
        ))

        assert drain(new_files) == ["Harald_0029 AD-1000.Civ5Save"]

    def test_writes_and_close_are_queued(self, save_dir):
        new_files = queue.Queue()
        handler = SaveFileHandler(new_files)
        path = str(save_dir / "Harald_0029 AD-1000.Civ5Save")

        handler.dispatch(FileCreatedEvent(path))
        handler.dispatch(FileModifiedEvent(path))
        handler.dispatch(FileClosedEvent(path))

        assert drain(new_files) == ["Harald_0029 AD-1000.Civ5Save"] * 3

    def test_other_events_ignored(self, save_dir):
        new_files = queue.Queue()
        handler = SaveFileHandler(new_files)

        handler.dispatch(FileCreatedEvent(str(save_dir / "notes.txt")))
        handler.dispatch(FileCreatedEvent(str(save_dir / "game.Civ5Save.part")))
        handler.dispatch(DirCreatedEvent(str(save_dir / "sub.Civ5Save")))
        handler.dispatch(DirModifiedEvent(str(save_dir)))

        assert drain(new_files) == []


class TestSaveWatcher:

    def test_reports_new_file(self, tmp_path):
        save_dir = tmp_path / "hotseat"
        new_files = queue.Queue()
        watcher = SaveWatcher(save_dir, new_files)
        watcher.start()
        try:
            assert save_dir.is_dir()
            assert watcher.is_running
            (save_dir / "Harald_0029 AD-1000.Civ5Save").write_bytes(b"CIV5")

            assert wait_for(lambda: not new_files.empty())
            assert new_files.get_nowait() == "Harald_0029 AD-1000.Civ5Save"
        finally:
            watcher.stop()
        assert not watcher.is_running

    def test_save_written_in_two_steps(self, tmp_path):
        save_dir = tmp_path / "hotseat"
        new_files = queue.Queue()
        watcher = SaveWatcher(save_dir, new_files)
        watcher.start()
        try:
            path = save_dir / "Harald_0029 AD-1000.Civ5Save"
            with open(path, "wb") as f:
                f.write(b"CIV5")
                f.flush()
                assert wait_for(lambda: not new_files.empty())
                drain(new_files)
                f.write(b"\x00" * 64)

            # The rest of the file is reported too
            assert wait_for(lambda: not new_files.empty())
            assert set(drain(new_files)) == {"Harald_0029 AD-1000.Civ5Save"}
        finally:
            watcher.stop()
