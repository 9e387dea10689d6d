"""Tests for tailing session log files."""

import asyncio

import pytest

from agent_radar.watchers import SessionFileWatcher, split_complete_lines


class Recorder:
    def __init__(self):
        self.batches = []

    def __call__(self, session_id, lines, replay):
        self.batches.append((session_id, list(lines), replay))

    @property
    def live_lines(self):
        return [line for _, lines, replay in self.batches if not replay for line in lines]


def append(path, text):
    with open(path, "a", encoding="utf-8") as f:
        f.write(text)


def test_split_complete_lines():
    """Test that only newline-terminated lines are consumed."""
    assert split_complete_lines(b"a\nb\n\nc") == (["a", "b"], 5)
    assert split_complete_lines(b"partial") == ([], 0)
    assert split_complete_lines(b"") == ([], 0)


@pytest.mark.asyncio
async def test_open_replays_history_tail(tmp_path):
    """Test that opening replays at most the configured number of lines."""
    path = tmp_path / "s.jsonl"
    path.write_text("".join(f'{{"n": {i}}}\n' for i in range(10)))
    recorder = Recorder()
    watcher = SessionFileWatcher("s", path, recorder, history_lines=3)

    await watcher.open()

    assert recorder.batches == [("s", ['{"n": 7}', '{"n": 8}', '{"n": 9}'], True)]
    assert watcher.offset == path.stat().st_size
    await watcher.close()


@pytest.mark.asyncio
async def test_history_window_drops_cut_first_line(tmp_path):
    """Test that a byte-bounded history window skips its leading fragment."""
    path = tmp_path / "s.jsonl"
    path.write_text("first-line-long\nsecond\nthird\n")
    recorder = Recorder()
    watcher = SessionFileWatcher("s", path, recorder, history_bytes=18)

    await watcher.open()

    assert recorder.batches[0][1] == ["second", "third"]
    await watcher.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("history_bytes", [13, 14])
async def test_history_window_on_line_boundary_keeps_first_line(tmp_path, history_bytes):
    """Test that a window opening on a line boundary replays that first line."""
    path = tmp_path / "s.jsonl"
    path.write_text("first\nsecond\nthird\n")
    recorder = Recorder()
    watcher = SessionFileWatcher("s", path, recorder, history_bytes=history_bytes)

    await watcher.open()

    assert recorder.batches[0][1] == ["second", "third"]
    assert watcher.offset == path.stat().st_size
    await watcher.close()


@pytest.mark.asyncio
async def test_read_new_holds_partial_line(tmp_path):
    """Test that a half-written line is delivered only once completed."""
    path = tmp_path / "s.jsonl"
    path.write_text('{"old": true}\n')
    recorder = Recorder()
    watcher = SessionFileWatcher("s", path, recorder)
    await watcher.open()

    append(path, '{"new": 1}\n{"new"')
    assert await watcher.read_new() == 1
    assert recorder.live_lines == ['{"new": 1}']

    append(path, ': 2}\n')
    assert await watcher.read_new() == 1
    assert recorder.live_lines == ['{"new": 1}', '{"new": 2}']
    assert await watcher.read_new() == 0
    await watcher.close()


@pytest.mark.asyncio
async def test_truncated_file_is_reread(tmp_path):
    """Test that a file shorter than the offset is read from the start."""
    path = tmp_path / "s.jsonl"
    path.write_text("one\ntwo\nthree\n")
    recorder = Recorder()
    watcher = SessionFileWatcher("s", path, recorder)
    await watcher.open()

    path.write_text("x\n")
    assert await watcher.read_new() == 1
    assert recorder.live_lines == ["x"]
    await watcher.close()


@pytest.mark.asyncio
async def test_missing_file_reads_nothing(tmp_path):
    """Test that a deleted file is not an error."""
    path = tmp_path / "s.jsonl"
    path.write_text("one\n")
    watcher = SessionFileWatcher("s", path, Recorder())
    await watcher.open()

    path.unlink()

    assert await watcher.read_new() == 0
    await watcher.close()


@pytest.mark.asyncio
async def test_notify_changed_coalesces_reads(tmp_path):
    """Test that change notifications are handed to the loop and read in order."""
    path = tmp_path / "s.jsonl"
    path.write_text("")
    recorder = Recorder()
    watcher = SessionFileWatcher("s", path, recorder)
    await watcher.open()

    append(path, "a\nb\n")
    watcher.notify_changed()
    watcher.notify_changed()
    for _ in range(50):
        await asyncio.sleep(0.01)
        if recorder.live_lines:
            break

    assert recorder.live_lines == ["a", "b"]
    assert watcher.lines_read == 2
    await watcher.close()
    assert not watcher.is_open
