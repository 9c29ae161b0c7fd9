"""
Unit tests for journal rollback and crash recovery.
"""

import os

import pytest

from ordrfm.core.classifier import AlbumScanner
from ordrfm.core.models import MoveOperation, MoveStatus
from ordrfm.core.move_executor import MoveExecutor
from ordrfm.core.rollback import RollbackManager


@pytest.fixture
def organized_root(temp_workspace):
    return os.path.join(temp_workspace, "organized")


@pytest.fixture
def manager(state_store, library, organized_root):
    return RollbackManager(state_store, protected_roots=[organized_root, library.root])


@pytest.fixture
def moved_album(state_store, manager, library, make_tracks, organized_root):
    """An album moved under batch-1; returns (source dir, destination dir, operations)"""
    source = library.album("Artist/Album", make_tracks("Artist", "Album", count=3), extras=["cover.jpg"])
    album = AlbumScanner(library.tag_reader()).scan(source)
    destination = os.path.join(organized_root, "Lossless", "Artist", "Artist - Album")
    operations = MoveExecutor(state_store, manager).move_album(album, destination, "batch-1",
                                                              scan_root=library.root)
    return source, destination, operations


class TestBatchRollback:
    """Rolling back whole batches."""

    def test_restores_every_file(self, manager, state_store, moved_album, organized_root):
        source, destination, operations = moved_album

        report = manager.rollback(batch_id="batch-1")

        assert not report.halted
        assert report.restored == 4
        assert sorted(os.listdir(source)) == ["album_01.flac", "album_02.flac", "album_03.flac", "cover.jpg"]
        assert not os.path.exists(destination)
        assert os.path.isdir(organized_root)
        # Newest move is undone first
        assert report.results[0].operation_id == operations[-1].operation_id

        rolled_back = state_store.get_batch_operations("batch-1", MoveStatus.ROLLED_BACK)
        assert {op.ref_operation_id for op in rolled_back} == {op.operation_id for op in operations}

    def test_second_rollback_is_a_noop(self, manager, moved_album):
        manager.rollback(batch_id="batch-1")
        report = manager.rollback(batch_id="batch-1")

        assert report.results == []
        assert not report.halted

    def test_dry_run_changes_nothing(self, manager, state_store, moved_album):
        source, destination, _ = moved_album

        report = manager.rollback(batch_id="batch-1", dry_run=True)

        assert report.dry_run
        assert report.restored == 4
        assert len(os.listdir(destination)) == 4
        assert state_store.get_batch_operations("batch-1", MoveStatus.ROLLED_BACK) == []

    def test_modified_destination_halts(self, manager, moved_album):
        source, destination, operations = moved_album
        with open(operations[0].dest_path, 'ab') as f:
            f.write(b" edited after the move")

        report = manager.rollback(batch_id="batch-1")

        assert report.halted
        assert "modified" in report.error
        assert report.restored == 3
        assert report.results[-1].operation_id == operations[0].operation_id
        assert os.path.exists(operations[0].dest_path)
        assert not os.path.exists(operations[0].source_path)

    def test_missing_destination_halts(self, manager, moved_album):
        _, _, operations = moved_album
        os.remove(operations[-1].dest_path)

        report = manager.rollback(batch_id="batch-1")

        assert report.halted
        assert report.restored == 0
        assert "missing" in report.error

    def test_occupied_source_halts(self, manager, moved_album):
        _, _, operations = moved_album
        os.makedirs(os.path.dirname(operations[-1].source_path), exist_ok=True)
        with open(operations[-1].source_path, 'wb') as f:
            f.write(b"new file in the old spot")

        report = manager.rollback(batch_id="batch-1")

        assert report.halted
        assert "occupied" in report.error

    def test_requires_scope(self, manager):
        with pytest.raises(ValueError):
            manager.rollback()

    def test_report_dict(self, manager, moved_album):
        data = manager.rollback(batch_id="batch-1").to_dict()

        assert data['batch_id'] == "batch-1"
        assert data['restored'] == 4
        assert data['failed'] == 0
        assert len(data['results']) == 4


class TestOperationRollback:
    """Rolling back a single journal entry."""

    def test_single_operation(self, manager, state_store, moved_album):
        _, _, operations = moved_album
        target = operations[1]

        report = manager.rollback(operation_id=target.operation_id)

        assert report.restored == 1
        assert os.path.exists(target.source_path)
        assert state_store.is_rolled_back(target.operation_id)
        assert len(state_store.get_rollback_candidates(batch_id="batch-1")) == 3

    def test_already_rolled_back(self, manager, moved_album):
        _, _, operations = moved_album
        manager.rollback(operation_id=operations[0].operation_id)

        report = manager.rollback(operation_id=operations[0].operation_id)

        assert report.halted
        assert "already rolled back" in report.error

    def test_unknown_operation(self, manager):
        report = manager.rollback(operation_id="nope")
        assert report.halted
        assert "Unknown operation" in report.error

    def test_pending_operation(self, manager, state_store):
        state_store.record_move_pending(MoveOperation("op-p", "batch-9", "/src/a.flac", "/dst/a.flac"))
        report = manager.rollback(operation_id="op-p")
        assert report.halted
        assert "pending" in report.error


class TestRecovery:
    """Entries left pending by an interrupted run."""

    def test_recover_pending(self, manager, state_store, temp_workspace):
        moved_src = os.path.join(temp_workspace, "src", "moved.flac")
        moved_dst = os.path.join(temp_workspace, "dst", "moved.flac")
        untouched_src = os.path.join(temp_workspace, "src", "untouched.flac")
        os.makedirs(os.path.dirname(moved_dst))
        os.makedirs(os.path.dirname(untouched_src))
        with open(moved_dst, 'wb') as f:
            f.write(b"arrived")
        with open(untouched_src, 'wb') as f:
            f.write(b"still here")

        state_store.record_move_pending(MoveOperation("op-moved", "batch-1", moved_src, moved_dst))
        state_store.record_move_pending(MoveOperation("op-untouched", "batch-1", untouched_src,
                                                      os.path.join(temp_workspace, "dst", "untouched.flac")))
        state_store.record_move_pending(MoveOperation("op-lost", "batch-1", "/gone/a.flac", "/gone/b.flac"))

        assert manager.recover_pending() == {'completed': 1, 'failed': 2}

        assert state_store.get_operation("op-moved").status == MoveStatus.COMPLETED
        assert state_store.get_operation("op-untouched").status == MoveStatus.FAILED
        assert state_store.get_operation("op-lost").error == "file lost during interrupted move"
        assert state_store.get_pending_moves() == []
