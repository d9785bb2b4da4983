"""Tests for context resolution against tracked snapshots."""

from pathlib import Path

from contextchat.context import ContextResolver, choose_payload
from contextchat.diff_engine import DiffEngine, PayloadKind
from contextchat.file_tracker import FileTracker
from contextchat.session import FileRange


class TestChoosePayload:
    """Tests for choose_payload."""

    def test_new_file_is_full(self):
        payload = choose_payload(None, "x = 1\n", path="/a.py")
        assert payload.kind is PayloadKind.FULL
        assert payload.content == "x = 1\n"
        assert "[load-once]" in payload.render()

    def test_unchanged_is_zero_length(self):
        payload = choose_payload("x = 1\n", "x = 1\n", path="/a.py")
        assert payload.kind is PayloadKind.UNCHANGED
        assert payload.content == ""
        assert payload.render() == ""

    def test_diff_payload_carries_encoded_changes(self):
        previous = "".join(f"line {i}\n" for i in range(30))
        current = previous.replace("line 7\n", "line seven\n")

        payload = choose_payload(previous, current, path="/a.py")

        assert payload.kind is PayloadKind.DIFF
        assert payload.content == "- 8 line 7\n+ 8 line seven\n"
        assert payload.snapshot == current
        assert payload.render().startswith("Here the updates of the file /a.py:")

    def test_range_diff_numbered_by_file_line(self, workspace):
        util = workspace / "util.py"
        file_range = FileRange(start=10, end=20)
        previous = file_range.slice(util.read_text())
        current = previous.replace("line 12\n", "line twelve\n")

        payload = choose_payload(previous, current, path=str(util), file_range=file_range)

        assert payload.kind is PayloadKind.DIFF
        assert payload.content == "- 12 line 12\n+ 12 line twelve\n"
        # Same numbering as the full rendering of the range
        assert "12 line 12" in choose_payload(None, previous, file_range=file_range).render()


class TestContextResolver:
    """Tests for ContextResolver."""

    def test_new_file_sent_in_full(self, workspace):
        resolver = ContextResolver(FileTracker(), working_dir=workspace)

        resolved = resolver.resolve(["main.py"])

        assert len(resolved.payloads) == 1
        payload = resolved.payloads[0]
        assert payload.kind is PayloadKind.FULL
        assert payload.path == str((workspace / "main.py").resolve())
        assert "def main():" in resolved.render()

    def test_does_not_modify_tracker(self, workspace):
        tracker = FileTracker()
        ContextResolver(tracker, working_dir=workspace).resolve(["main.py"])
        assert len(tracker) == 0

    def test_unchanged_tracked_file_renders_nothing(self, workspace):
        tracker = FileTracker()
        path = str((workspace / "main.py").resolve())
        tracker.register(path, None, (workspace / "main.py").read_text())

        resolved = ContextResolver(tracker, working_dir=workspace).resolve(["main.py"])

        assert resolved.payloads[0].kind is PayloadKind.UNCHANGED
        assert resolved.is_empty

    def test_range_is_sliced(self, workspace):
        resolved = ContextResolver(FileTracker(), working_dir=workspace).resolve(["util.py:3-4"])

        payload = resolved.payloads[0]
        assert payload.range == FileRange(start=3, end=4)
        assert payload.snapshot == "line 3\nline 4\n"
        # Numbering starts at the range start
        assert "3 line 3" in payload.render()

    def test_tracked_files_are_rechecked(self, workspace):
        """Files tracked earlier are included even when not named again."""
        tracker = FileTracker()
        path = str((workspace / "util.py").resolve())
        tracker.register(path, None, "stale\n")

        resolved = ContextResolver(tracker, working_dir=workspace).resolve([])

        assert [p.path for p in resolved.payloads] == [path]
        assert resolved.payloads[0].kind is not PayloadKind.UNCHANGED

    def test_include_tracked_off(self, workspace):
        tracker = FileTracker()
        tracker.register(str((workspace / "util.py").resolve()), None, "stale\n")

        resolver = ContextResolver(tracker, working_dir=workspace, include_tracked=False)

        assert resolver.resolve([]).payloads == []

    def test_duplicates_resolved_once(self, workspace):
        resolved = ContextResolver(FileTracker(), working_dir=workspace).resolve(["main.py", "./main.py"])
        assert len(resolved.payloads) == 1

    def test_missing_file_skipped(self, workspace):
        resolved = ContextResolver(FileTracker(), working_dir=workspace).resolve(["missing.py", "main.py"])

        assert [Path(p.path).name for p in resolved.payloads] == ["main.py"]
        assert resolved.skipped == [str((workspace / "missing.py").resolve())]

    def test_binary_content_falls_back_to_full(self, workspace):
        tracker = FileTracker()
        path = str((workspace / "main.py").resolve())
        tracker.register(path, None, "old\n")

        resolver = ContextResolver(
            tracker,
            DiffEngine(),
            working_dir=workspace,
            reader=lambda p: "bin\x00ary",
        )
        payload = resolver.resolve(["main.py"]).payloads[0]

        assert payload.kind is PayloadKind.FULL
        assert payload.content == "bin\x00ary"

    def test_injected_reader(self, workspace):
        seen = []

        def reader(path):
            seen.append(path)
            return "virtual\n"

        resolver = ContextResolver(FileTracker(), working_dir=workspace, reader=reader)
        payload = resolver.resolve(["anything.py"]).payloads[0]

        assert payload.snapshot == "virtual\n"
        assert seen == [workspace.resolve() / "anything.py"]
