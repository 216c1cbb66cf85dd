"""Tests for the conversation history checker CLI."""

import json
from pathlib import Path

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage, messages_to_dict

from src.cli import check_file, main


def _write(path: Path, messages: list) -> Path:
    path.write_text(json.dumps({"messages": messages_to_dict(messages)}))
    return path


@pytest.fixture
def healthy_file(tmp_path: Path) -> Path:
    return _write(
        tmp_path / "healthy.json",
        [
            HumanMessage(content="disk usage?"),
            AIMessage(content="", tool_calls=[{"id": "call_1", "name": "disk", "args": {}}]),
            ToolMessage(content="40%", tool_call_id="call_1"),
            AIMessage(content="Disks are at 40%."),
        ],
    )


@pytest.fixture
def corrupted_file(tmp_path: Path) -> Path:
    return _write(
        tmp_path / "corrupted.json",
        [
            HumanMessage(content="disk usage?"),
            ToolMessage(content="40%", tool_call_id="call_lost"),
        ],
    )


class TestCheckFile:
    def test_healthy(self, healthy_file: Path) -> None:
        assert check_file(healthy_file).recommendation == "ok"

    def test_corrupted(self, corrupted_file: Path) -> None:
        verdict = check_file(corrupted_file)
        assert verdict.orphaned_results == ["call_lost"]

    def test_not_a_conversation(self, tmp_path: Path) -> None:
        path = tmp_path / "other.json"
        path.write_text(json.dumps({"foo": 1}))
        with pytest.raises(ValueError, match="no 'messages' list"):
            check_file(path)


class TestMain:
    def test_no_args_is_usage_error(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([]) == 2
        assert "Usage" in capsys.readouterr().out

    def test_ok_exit_code(self, healthy_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([str(healthy_file)]) == 0
        assert f"{healthy_file}: ok" in capsys.readouterr().out

    def test_clear_session_exit_code(self, corrupted_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([str(corrupted_file)]) == 1
        out = capsys.readouterr().out
        assert "clear_session" in out
        assert "unknown call: call_lost" in out

    def test_unreadable_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([str(tmp_path / "missing.json")]) == 2
        assert "could not check" in capsys.readouterr().out

    def test_read_error_wins_over_clear_session(self, corrupted_file: Path, tmp_path: Path) -> None:
        assert main([str(corrupted_file), str(tmp_path / "missing.json")]) == 2
