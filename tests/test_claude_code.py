"""Tests for Claude Code transcript conversion."""

import base64
import hashlib
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from agent_transcripts.assembler import assemble_transcript, calculate_transcript_stats
from agent_transcripts.claude_code import (
    convert_claude_code_file,
    convert_claude_code_files,
    convert_claude_code_transcript,
)
from agent_transcripts.config import ConvertOptions
from agent_transcripts.models import GitContext, TokenUsage
from agent_transcripts.schemas import TranscriptValidationError, dump_transcript

CWD = "/work/repo"
MODEL = "claude-sonnet-4-5-20250929"
NOW = datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)
PNG_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\nfake").decode()
PNG_SHA = hashlib.sha256(b"\x89PNG\r\n\x1a\nfake").hexdigest()


def _user(uuid, ts, content, **extra):
    record = {
        "uuid": uuid,
        "type": "user",
        "sessionId": "sess-1",
        "cwd": CWD,
        "gitBranch": "main",
        "version": "2.0.1",
        "message": {"role": "user", "content": content},
        **extra,
    }
    if ts is not None:
        record["timestamp"] = ts
    return record


def _assistant(uuid, ts, content, msg_id="msg_1", usage=None, **extra):
    message = {"id": msg_id, "role": "assistant", "model": MODEL, "content": content}
    if usage is not None:
        message["usage"] = usage
    return {
        "uuid": uuid,
        "type": "assistant",
        "timestamp": ts,
        "sessionId": "sess-1",
        "cwd": CWD,
        "requestId": "req_1",
        "message": message,
        **extra,
    }


def _png_image():
    return {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": PNG_B64}}


def _tool_result(call_id, content="", is_error=None):
    part = {"type": "tool_result", "tool_use_id": call_id, "content": content}
    if is_error is not None:
        part["is_error"] = is_error
    return part


def _session():
    usage = {"input_tokens": 10, "output_tokens": 5}
    return [
        _user("u1", "2026-01-01T10:00:00Z", "Please fix the failing test"),
        _assistant("a1", "2026-01-01T10:00:01Z", [{"type": "text", "text": "Looking."}], usage=usage),
        _assistant(
            "a2",
            "2026-01-01T10:00:02Z",
            [{"type": "tool_use", "id": "tu1", "name": "Read", "input": {"file_path": f"{CWD}/sub/file.md"}}],
            usage=usage,
            parentUuid="a1",
        ),
        _assistant(
            "a3",
            "2026-01-01T10:00:02Z",
            [{"type": "tool_use", "id": "tu2", "name": "Grep", "input": {"pattern": "TODO"}}],
            parentUuid="a2",
        ),
        _assistant(
            "a4",
            "2026-01-01T10:00:02Z",
            [{"type": "tool_use", "id": "tu3", "name": "Bash", "input": {"command": "ls"}}],
            parentUuid="a3",
        ),
        _user(
            "r1",
            "2026-01-01T10:00:03Z",
            [_tool_result("tu1", "ignored")],
            parentUuid="a2",
            toolUseResult={"type": "text", "file": {"filePath": f"{CWD}/sub/file.md", "content": "# Title"}},
        ),
        _user("r2", "2026-01-01T10:00:04Z", [_tool_result("tu2", "sub/file.md")], parentUuid="a3"),
        _user(
            "r3",
            "2026-01-01T10:00:05Z",
            [_tool_result("tu3")],
            parentUuid="a4",
            toolUseResult={"stdout": "sub", "stderr": "", "stdoutLines": 1},
        ),
    ]


def _convert(records, **options):
    options.setdefault("now", NOW)
    result = convert_claude_code_transcript(records, ConvertOptions(**options))
    assert result is not None
    return result, dump_transcript(result.transcript)


class TestConvertTranscript:
    def test_envelope(self):
        result, doc = _convert(_session())
        assert doc["v"] == 1
        assert doc["id"] == "sess-1"
        assert doc["source"] == "claude-code"
        assert doc["preview"] == "Please fix the failing test"
        assert doc["model"] == f"anthropic/{MODEL}"
        assert doc["clientVersion"] == "2.0.1"
        assert doc["cwd"] == CWD
        assert doc["messageCount"] == 5
        assert doc["toolCount"] == 3
        assert doc["userMessageCount"] == 1
        assert result.transcript.timestamp == datetime(2026, 1, 1, 10, 0, 5, tzinfo=timezone.utc)

    def test_repeated_completion_counted_once(self):
        _, doc = _convert(_session())
        assert doc["tokenUsage"] == {
            "inputTokens": 10,
            "cachedInputTokens": 0,
            "outputTokens": 5,
            "reasoningOutputTokens": 0,
            "totalTokens": 15,
        }
        assert doc["blendedTokens"] == 15
        assert doc["modelUsage"] == [{"model": f"anthropic/{MODEL}", "usage": doc["tokenUsage"]}]

    def test_parallel_tool_results_all_linked(self):
        _, doc = _convert(_session())
        calls = [m for m in doc["messages"] if m["type"] == "tool-call"]
        assert [c["toolName"] for c in calls] == ["Read", "Grep", "Bash"]
        assert all("output" in c for c in calls)
        assert calls[0]["input"] == {"file_path": "./sub/file.md"}
        assert calls[0]["output"] == {"type": "text", "file": {"content": "# Title"}}
        assert calls[1]["output"] == "sub/file.md"
        assert calls[2]["output"] == {"stdout": "sub", "stderr": ""}

    def test_conversion_is_deterministic(self):
        _, first = _convert(_session())
        _, second = _convert(_session())
        assert first == second

    def test_injected_git_context(self):
        _, doc = _convert(_session(), git_context=GitContext(relative_cwd="", branch="dev", repo="github.com/a/b"))
        assert doc["git"] == {"relativeCwd": "", "branch": "dev", "repo": "github.com/a/b"}
        _, doc = _convert(_session(), git_context=None)
        assert doc["git"] is None

    def test_inferred_git_context(self):
        _, doc = _convert(_session())
        assert doc["git"] == {"relativeCwd": None, "branch": "main", "repo": None}

    def test_tool_error_flag(self):
        records = [
            _user("u1", "2026-01-01T10:00:00Z", "Read the config please"),
            _assistant(
                "a1",
                "2026-01-01T10:00:01Z",
                [{"type": "tool_use", "id": "tu1", "name": "Read", "input": {"file_path": "missing.txt"}}],
            ),
            _user(
                "r1",
                "2026-01-01T10:00:02Z",
                [_tool_result("tu1", "File does not exist.", is_error=True)],
            ),
        ]
        _, doc = _convert(records)
        call = doc["messages"][-1]
        assert call["isError"] is True
        assert call["output"] == "File does not exist."

    def test_duplicate_result_keeps_first(self):
        records = _session() + [
            _user("r4", "2026-01-01T10:00:06Z", [_tool_result("tu2", "second answer")]),
        ]
        _, doc = _convert(records)
        grep = next(m for m in doc["messages"] if m.get("toolName") == "Grep")
        assert grep["output"] == "sub/file.md"


class TestPricing:
    def test_tiered_cost(self):
        records = [
            _user("u1", "2026-01-01T10:00:00Z", "Summarize the repository"),
            _assistant(
                "a1",
                "2026-01-01T10:00:01Z",
                [{"type": "text", "text": "Done."}],
                usage={"input_tokens": 250_000, "output_tokens": 0},
            ),
        ]
        pricing = {
            MODEL: {"input_cost_per_token": 3e-6, "input_cost_per_token_above_200k_tokens": 6e-6}
        }
        _, doc = _convert(records, pricing=pricing)
        assert doc["costUsd"] == pytest.approx(200_000 * 3e-6 + 50_000 * 6e-6)

    def test_no_pricing_costs_nothing(self):
        _, doc = _convert(_session())
        assert doc["costUsd"] == 0.0


class TestUserContent:
    def test_duplicate_user_turn_keeps_images(self):
        image = {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": PNG_B64}}
        records = [
            _user("u1", "2026-01-01T10:00:00Z", [{"type": "text", "text": "What is in this screenshot?"}]),
            _user(
                "u2",
                "2026-01-01T10:00:00Z",
                [{"type": "text", "text": "What is in this screenshot?"}, image],
            ),
            _user("u3", "2026-01-01T10:00:01Z", [image, {"type": "text", "text": "And this one?"}]),
        ]
        result, doc = _convert(records)
        users = [m for m in doc["messages"] if m["type"] == "user"]
        assert len(users) == 2
        assert users[0]["images"] == users[1]["images"]
        assert users[0]["images"][0]["mediaType"] == "image/png"
        assert len(result.blobs) == 1

    def test_image_only_turn_joins_next_user_text(self):
        records = [
            _user("u1", "2026-01-01T10:00:00Z", [_png_image()]),
            _user("u2", "2026-01-01T10:00:01Z", "What is this?"),
        ]
        result, doc = _convert(records)
        assert doc["messages"] == [
            {
                "type": "user",
                "text": "What is this?",
                "id": "u2",
                "timestamp": "2026-01-01T10:00:01Z",
                "images": [{"sha256": PNG_SHA, "mediaType": "image/png"}],
            }
        ]
        assert list(result.blobs) == [PNG_SHA]

    def test_unreferenced_image_not_stored(self):
        records = [
            _user("u1", "2026-01-01T10:00:00Z", [_png_image()]),
            _assistant("a1", "2026-01-01T10:00:01Z", [{"type": "text", "text": "A diagram."}]),
            _user("u2", "2026-01-01T10:00:02Z", "Thanks"),
        ]
        result, doc = _convert(records)
        assert all("images" not in m for m in doc["messages"])
        assert result.blobs == {}

    def test_tool_input_images_become_blobs(self):
        records = [
            _user("u1", "2026-01-01T10:00:00Z", "Show me the mockup"),
            _assistant(
                "a1",
                "2026-01-01T10:00:01Z",
                [{"type": "tool_use", "id": "tu1", "name": "mcp__view", "input": {"attachments": [_png_image()]}}],
            ),
        ]
        result, doc = _convert(records)
        call = doc["messages"][-1]
        assert call["input"] == {
            "attachments": [{"type": "image", "source": {"type": "sha256", "mediaType": "image/png", "sha256": PNG_SHA}}]
        }
        assert call["images"] == [{"sha256": PNG_SHA, "mediaType": "image/png"}]
        assert list(result.blobs) == [PNG_SHA]
        assert PNG_B64 not in json.dumps(doc)

    def test_system_reminders_stripped(self):
        records = [
            _user(
                "u1",
                "2026-01-01T10:00:00Z",
                "Add a test<system-reminder>internal note</system-reminder>",
            )
        ]
        _, doc = _convert(records)
        assert doc["messages"][0]["text"] == "Add a test"

    def test_compaction_summary(self):
        records = [
            _user("u1", "2026-01-01T10:00:00Z", "Summary of the earlier work", isCompactSummary=True),
            _user("u2", "2026-01-01T10:00:01Z", "Continue with the refactor"),
        ]
        _, doc = _convert(records)
        assert doc["messages"][0] == {
            "type": "compaction-summary",
            "text": "Summary of the earlier work",
            "id": "u1",
            "timestamp": "2026-01-01T10:00:00Z",
        }
        assert doc["userMessageCount"] == 1

    def test_meta_records_skipped(self):
        records = [
            _user("u1", "2026-01-01T10:00:00Z", "Caveat: generated by the client", isMeta=True),
            _user("u2", "2026-01-01T10:00:01Z", "Explain the build"),
        ]
        _, doc = _convert(records)
        assert [m["text"] for m in doc["messages"]] == ["Explain the build"]


class TestCommands:
    def test_clear_suppressed_cost_kept(self):
        records = [
            _user("c1", "2026-01-01T10:00:00Z", "<command-name>/clear</command-name>"),
            _user("c2", "2026-01-01T10:00:01Z", "<local-command-stdout></local-command-stdout>"),
            _user(
                "c3",
                "2026-01-01T10:00:02Z",
                "<command-name>/cost</command-name>\n<command-args></command-args>",
            ),
            _user(
                "c4",
                "2026-01-01T10:00:03Z",
                "<local-command-stdout>\x1b[1mTotal cost: $0.10\x1b[0m</local-command-stdout>",
            ),
        ]
        _, doc = _convert(records)
        assert doc["messages"] == [
            {
                "type": "command",
                "name": "/cost",
                "output": "Total cost: $0.10",
                "id": "c3",
                "timestamp": "2026-01-01T10:00:02Z",
            }
        ]
        assert doc["preview"] is None

    def test_pending_command_flushed(self):
        records = [_user("c1", "2026-01-01T10:00:00Z", "<command-name>/model</command-name><command-args>opus</command-args>")]
        _, doc = _convert(records)
        assert doc["messages"][0]["name"] == "/model"
        assert doc["messages"][0]["args"] == "opus"


class TestEmptyInput:
    def test_no_records(self):
        assert convert_claude_code_transcript([], ConvertOptions(now=NOW)) is None

    def test_only_summaries(self):
        records = [{"type": "summary", "summary": "Old session", "leafUuid": "x"}]
        assert convert_claude_code_transcript(records) is None


class TestConvertFile:
    def test_file_mtime_used_without_timestamps(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "session.jsonl"
            records = [_user("u1", None, "Please review the diff", cwd=tmpdir)]
            path.write_text("\n".join(json.dumps(r) for r in records) + "\n")
            mtime = datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc).timestamp()
            os.utime(path, (mtime, mtime))

            result = convert_claude_code_file(path)

        assert result.transcript.timestamp == datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert result.transcript.git.branch == "main"
        assert result.transcript.git.repo is None

    def test_empty_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "empty.jsonl"
            path.write_text("\n")
            assert convert_claude_code_file(path) is None

    def test_batch_skips_empty_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            empty = Path(tmpdir) / "empty.jsonl"
            empty.write_text("\n")
            session = Path(tmpdir) / "session.jsonl"
            session.write_text("\n".join(json.dumps(r) for r in _session()) + "\n")
            results = convert_claude_code_files([empty, session], ConvertOptions(now=NOW))
        assert [r.transcript.id for r in results] == ["sess-1"]


class TestAssembler:
    def test_edit_and_write_stats(self):
        messages = [
            {"type": "user", "text": "go"},
            {"type": "tool-call", "toolName": "Write", "input": {"file_path": "./a.py", "content": "x\ny"}},
            {
                "type": "tool-call",
                "toolName": "Edit",
                "input": {"file_path": "./b.py", "diff": "-old\n+new\n+extra\n"},
            },
            {
                "type": "tool-call",
                "toolName": "Edit",
                "input": {"file_path": "./c.py", "diff": "-x\n+y\n"},
                "isError": True,
            },
        ]
        stats = calculate_transcript_stats(messages)
        assert stats.tool_count == 3
        assert stats.user_message_count == 1
        assert stats.files_changed == 2
        assert stats.lines_added == 3
        assert stats.lines_removed == 0
        assert stats.lines_modified == 1

    def test_invalid_message_rejected(self):
        with pytest.raises(TranscriptValidationError):
            assemble_transcript(
                source="claude-code",
                transcript_id="t1",
                timestamp=NOW,
                preview=None,
                model=None,
                client_version=None,
                token_usage=TokenUsage(),
                model_usage=[],
                cost_usd=0.0,
                git=None,
                cwd=None,
                messages=[{"type": "bogus", "text": "x"}],
                blobs={},
            )
