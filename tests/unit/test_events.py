"""Tests for swarm.events module."""

from pathlib import Path

from swarm.events import (
    ChatLog,
    MemorySink,
    NullSink,
    format_message,
    parse_line,
    write_merge_status,
    write_sprint_plan,
    write_sprint_status,
)


class TestChatFormat:
    """Tests for chat line formatting."""

    def test_format_and_parse(self) -> None:
        line = format_message("Aaron", "done | really", timestamp="2026-01-02 03:04:05")

        assert line == "2026-01-02 03:04:05 | Aaron | done | really"
        assert parse_line(line) == ("2026-01-02 03:04:05", "Aaron", "done | really")

    def test_parse_rejects_other_lines(self) -> None:
        assert parse_line("not a chat line") is None


class TestChatLog:
    """Tests for the chat file sink."""

    def test_append_and_read(self, tmp_path: Path) -> None:
        chat = ChatLog(tmp_path / "team" / "chat.md")

        chat.append("hello")
        chat.append("working", sender="Betty")

        assert len(chat.read_recent(10)) == 2
        assert chat.read_recent(1)[0].endswith("| Betty | working")
        assert len(chat.read_from("ScrumMaster")) == 1
        assert chat.read_recent(0) == []

    def test_missing_file_reads_empty(self, tmp_path: Path) -> None:
        chat = ChatLog(tmp_path / "chat.md")

        assert chat.read_recent(5) == []
        assert chat.read_from("Aaron") == []

    def test_write_failure_does_not_raise(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        chat = ChatLog(blocker / "chat.md")

        chat.append("dropped")

        assert not (blocker / "chat.md").exists()


class TestSprintMessages:
    """Tests for the structured sprint messages."""

    def test_sprint_plan(self) -> None:
        sink = MemorySink()

        write_sprint_plan(sink, 2, [("Aaron", "a"), ("Aaron", "b"), ("Betty", "c")])

        assert sink.texts() == [
            "Sprint 2 plan: 3 task(s) assigned to 2 agent(s)",
            "Aaron assigned: a",
            "Aaron assigned: b",
            "Betty assigned: c",
        ]

    def test_sprint_status(self) -> None:
        sink = MemorySink()

        write_sprint_status(sink, 1, completed=3, failed=1, remaining=2, total=6)

        assert sink.texts()[0] == "SPRINT STATUS: Sprint 1 complete"
        assert "SPRINT STATUS: Failed this sprint: 1" in sink.texts()
        assert sink.texts()[-1] == "SPRINT STATUS: Total tasks: 6"

    def test_merge_status_and_null_sink(self) -> None:
        sink = MemorySink()

        write_merge_status(sink, "Aaron", "failed", "conflict")
        NullSink().append("ignored")

        assert sink.texts() == ["Merge failed for Aaron: conflict"]
