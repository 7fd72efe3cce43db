"""Tests for the JSON document codec."""

import pytest

from buildlens.db.codec import (
    clean_json_string,
    decode_document,
    decode_object,
    encode_document,
    encode_metadata,
)
from buildlens.exceptions import ContentEncodingError


class TestEncode:
    def test_encodes_dict(self):
        assert encode_document({"severity": "LOW"}) == '{"severity": "LOW"}'

    def test_none_is_empty_object(self):
        assert encode_document(None) == "{}"

    def test_keeps_unicode(self):
        assert encode_document({"label": "Build №"}) == '{"label": "Build №"}'

    def test_unserializable_raises(self):
        with pytest.raises(ContentEncodingError) as exc_info:
            encode_document({"when": object()})

        assert exc_info.value.field == "content"

    def test_nan_raises(self):
        with pytest.raises(ContentEncodingError):
            encode_document({"score": float("nan")})

    def test_empty_metadata_is_null(self):
        assert encode_metadata(None) is None
        assert encode_metadata({}) is None
        assert encode_metadata({"build_number": 3}) == '{"build_number": 3}'


class TestDecode:
    def test_decodes_text(self):
        assert decode_document('{"a": [1, 2]}') == {"a": [1, 2]}

    @pytest.mark.parametrize("raw", [None, "", "{not json"])
    def test_missing_or_malformed_is_empty(self, raw):
        assert decode_document(raw) == {}

    def test_malformed_returns_given_default(self):
        sentinel = object()

        assert decode_document("{oops", default=sentinel) is sentinel

    def test_malformed_is_logged(self, caplog):
        decode_document("[1, 2")

        assert "Failed to deserialize document" in caplog.text

    def test_decode_object_drops_non_objects(self):
        assert decode_object("[1, 2]") == {}
        assert decode_object('{"x": 1}') == {"x": 1}


class TestCleanJsonString:
    def test_strips_code_fence(self):
        raw = '```json\n{"anomalies": []}\n```'

        assert clean_json_string(raw) == '{"anomalies": []}'

    def test_drops_surrounding_prose(self):
        raw = 'Here is the analysis:\n{"riskScore": {"score": 40}}\nLet me know!'

        assert clean_json_string(raw) == '{"riskScore": {"score": 40}}'

    def test_text_without_braces_is_trimmed_only(self):
        assert clean_json_string("  no json here  ") == "no json here"

    def test_none(self):
        assert clean_json_string(None) is None
