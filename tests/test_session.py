"""Tests for the local session state file."""

import json

from cm_sheet_sync.sync import SessionState


def test_missing_file_gives_fresh_state(tmp_path):
    """Test that a first run starts at generation zero."""
    state = SessionState.load(tmp_path / "state.json")

    assert state.generation == 0
    assert state.entities == {}


def test_save_and_load_round_trip(tmp_path):
    """Test that generation and entity history survive a save."""
    path = tmp_path / "state.json"
    state = SessionState()
    state.next_generation()
    state.mark_load("Campaigns", 3)
    state.mark_push("Ads", pushed=5, failed=1)

    state.save(path)
    loaded = SessionState.load(path)

    assert loaded.generation == 1
    assert loaded.entities["Campaigns"].rows_loaded == 3
    assert loaded.entities["Campaigns"].last_load is not None
    assert loaded.entities["Ads"].rows_pushed == 5
    assert loaded.entities["Ads"].rows_failed == 1


def test_generation_only_moves_forward():
    """Test that each operation draws a new generation."""
    state = SessionState()

    assert [state.next_generation() for _ in range(3)] == [1, 2, 3]


def test_save_keeps_backup_of_previous_file(tmp_path):
    """Test that saving twice leaves the earlier state in the backup file."""
    path = tmp_path / "state.json"
    state = SessionState()
    state.next_generation()
    state.save(path)
    state.next_generation()
    state.save(path)

    backup = json.loads((tmp_path / "state.json.backup").read_text())

    assert backup["generation"] == 1
    assert json.loads(path.read_text())["generation"] == 2


def test_corrupted_file_recovers_from_backup(tmp_path):
    """Test that a corrupted state file falls back to its backup."""
    path = tmp_path / "state.json"
    state = SessionState()
    state.next_generation()
    state.save(path)
    state.next_generation()
    state.save(path)
    path.write_text("{not json")

    assert SessionState.load(path).generation == 1


def test_corrupted_file_without_backup_starts_fresh(tmp_path):
    """Test that an unreadable state with no backup is replaced by a fresh one."""
    path = tmp_path / "state.json"
    path.write_text('{"generation": "many"}')

    assert SessionState.load(path).generation == 0


def test_get_entity_state_creates_missing_entries():
    """Test that unknown entities get an empty history."""
    state = SessionState()

    entity = state.get_entity_state("Placements")

    assert entity.rows_loaded == 0
    assert state.entities["Placements"] is entity
