"""Tests for the producer write path."""

import pytest

from buildlens.exceptions import InvalidQueryError
from buildlens.models.db import MessageKind
from buildlens.services import recorder as recorder_module
from buildlens.services.recorder import (
    IncomingMessage,
    MessageRecorder,
    normalize_content,
    resolve_build_number,
)

from conftest import NOW


@pytest.fixture
def recorder(db_session) -> MessageRecorder:
    return MessageRecorder(db_session)


class TestResolveBuildNumber:
    @pytest.mark.parametrize(
        "metadata,expected",
        [
            ({"build_number": 12}, 12),
            ({"build_number": "12"}, 12),
            ({"build_number": " 7 "}, 7),
            ({"build_number": 3.0}, 3),
            ({"build_number": "abc"}, 0),
            ({"build_number": True}, 0),
            ({}, 0),
            (None, 0),
        ],
    )
    def test_resolve(self, metadata, expected):
        assert resolve_build_number(metadata, "job-a") == expected

    def test_invalid_format_is_logged(self, caplog):
        resolve_build_number({"build_number": "x1"}, "job-a")

        assert "Invalid build_number format" in caplog.text


class TestNormalizeContent:
    def test_fenced_ai_output(self):
        raw = 'Analysis:\n```json\n{"anomalies": [{"severity": "LOW"}]}\n```'

        assert normalize_content(MessageKind.ASSISTANT, raw, "job-a") == {
            "anomalies": [{"severity": "LOW"}]
        }

    def test_plain_text_is_wrapped(self):
        assert normalize_content(MessageKind.USER, "BUILD SUCCESSFUL", "job-a") == {
            "text": "BUILD SUCCESSFUL"
        }

    def test_dicts_pass_through(self):
        content = {"type": "build_log_data"}

        assert normalize_content(MessageKind.USER, content, "job-a") is content

    def test_oversized_text_is_truncated(self, monkeypatch):
        monkeypatch.setattr(recorder_module, "MAX_CONTENT_LENGTH", 10)

        assert normalize_content(MessageKind.USER, '{"log": "0123456789"}', "job-a") == {
            "text": '{"log": "0',
            "truncated": True,
        }


class TestMessageRecorder:
    def test_record(self, recorder):
        message_id = recorder.record(
            "job-a",
            "ASSISTANT",
            '```json\n{"riskScore": {"score": 5}}\n```',
            metadata={"build_number": "42"},
            timestamp=NOW,
        )

        stored = recorder.repository.get(message_id)
        assert stored.build_number == 42
        assert stored.content == {"riskScore": {"score": 5}}
        assert stored.extra_data == {"build_number": "42"}

    @pytest.mark.parametrize(
        "conversation_id,kind,content",
        [("", "USER", {}), ("job-a", "TOOL", {}), ("job-a", "USER", None)],
    )
    def test_rejects_invalid_messages(self, recorder, conversation_id, kind, content):
        with pytest.raises(InvalidQueryError):
            recorder.record(conversation_id, kind, content)

    def test_record_many_skips_missing_content(self, recorder):
        ids = recorder.record_many(
            "job-a",
            [
                IncomingMessage(MessageKind.USER, {"chunk": 1}, {"build_number": 1}),
                IncomingMessage(MessageKind.USER, None, {"build_number": 1}),
                IncomingMessage(MessageKind.ASSISTANT, '{"anomalies": []}', {"build_number": 1}),
            ],
        )

        assert len(ids) == 2
        assert [m.id for m in recorder.history("job-a", 10)] == ids

    def test_history_and_clear(self, recorder):
        for i in range(4):
            recorder.record("job-a", "USER", {"i": i}, {"build_number": 1})

        assert [m.content["i"] for m in recorder.history("job-a", 2)] == [2, 3]
        assert recorder.clear("job-a") == 4
        assert recorder.history("job-a", 2) == []

    def test_has_two_build_logs(self, recorder):
        metadata = {"build_number": 8}
        recorder.record("job-a", "USER", {"type": "build_log_data"}, metadata)
        assert recorder.has_two_build_logs("job-a", 8) is False

        recorder.record("job-a", "USER", {"type": "build_log_data"}, metadata)
        recorder.record("job-a", "USER", {"type": "scan_report"}, metadata)
        assert recorder.has_two_build_logs("job-a", 8) is True

        recorder.record("job-a", "USER", {"type": "build_log_data"}, metadata)
        assert recorder.has_two_build_logs("job-a", 8) is False

    def test_has_two_build_logs_rejects_negative_build(self, recorder):
        with pytest.raises(InvalidQueryError):
            recorder.has_two_build_logs("job-a", -1)
