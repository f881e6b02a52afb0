"""Tests for LLM field extraction."""

import pytest

from conftest import FakeChatClient, make_columns, sara_reply
from leadsync.application.use_cases.extract_fields import ExtractFieldsUseCase
from leadsync.domain.errors import TransientExternalError, UpstreamRequestError
from leadsync.domain.models import SENTINEL, ColumnSpec


class TestExtract:
    def test_extracts_fields_from_json_reply(self, policy):
        chat = FakeChatClient([sara_reply()])
        extractor = ExtractFieldsUseCase(chat, policy)

        result = extractor.extract("Hi, I'm Sara, interested in the blue sofa", make_columns())

        assert not result.skipped
        assert result.model == "primary-model"
        assert result.fields["name"] == "Sara"
        assert "sofa" in result.fields["product"]
        assert result.fields["timestamp"] == SENTINEL

    def test_result_has_entry_for_every_column(self, policy):
        chat = FakeChatClient(['{"name": "Sara"}'])
        extractor = ExtractFieldsUseCase(chat, policy)

        result = extractor.extract("I'm Sara", make_columns())

        assert set(result.fields) == {"name", "product", "phone", "timestamp"}
        assert result.fields["product"] == SENTINEL

    def test_empty_text_is_skipped_without_calling_model(self, policy):
        chat = FakeChatClient()
        extractor = ExtractFieldsUseCase(chat, policy)

        result = extractor.extract("   ", make_columns())

        assert result.skipped
        assert result.skipped_reason == "empty message"
        assert chat.calls == []

    def test_instructions_list_each_column(self, policy):
        chat = FakeChatClient([sara_reply()])
        extractor = ExtractFieldsUseCase(chat, policy)
        columns = make_columns() + [
            ColumnSpec(id="budget", display_name="Budget", extraction_prompt="Extract the budget in USD.")
        ]

        extractor.extract("Budget is 500", columns)

        system = chat.calls[0]["system"]
        assert '"budget" (Budget): Extract the budget in USD.' in system
        assert '"name" (Customer Name)' in system
        assert f'"{SENTINEL}"' in system
        assert chat.calls[0]["user"] == "Budget is 500"

    def test_falls_back_to_secondary_model_on_transient_error(self, policy):
        chat = FakeChatClient([TransientExternalError("timeout"), sara_reply()])
        extractor = ExtractFieldsUseCase(chat, policy)

        result = extractor.extract("Hi, I'm Sara", make_columns())

        assert [c["model"] for c in chat.calls] == ["primary-model", "fallback-model"]
        assert result.model == "fallback-model"
        assert result.fields["name"] == "Sara"

    def test_fatal_model_error_propagates(self, policy):
        chat = FakeChatClient([UpstreamRequestError("invalid api key", status_code=401)])
        extractor = ExtractFieldsUseCase(chat, policy)

        with pytest.raises(UpstreamRequestError):
            extractor.extract("Hi", make_columns())
        assert len(chat.calls) == 1


class TestParseResponse:
    @pytest.fixture
    def extractor(self, policy):
        return ExtractFieldsUseCase(FakeChatClient(), policy)

    def test_json_inside_prose_and_fences(self, extractor):
        content = 'Sure! Here you go:\n```json\n{"name": "Sara", "product": "sofa"}\n```'

        fields = extractor.parse_response(content, make_columns())

        assert fields["name"] == "Sara"
        assert fields["product"] == "sofa"

    def test_think_block_is_ignored(self, extractor):
        content = '<think>maybe {"name": "Wrong"}</think>{"name": "Sara"}'

        fields = extractor.parse_response(content, make_columns())

        assert fields["name"] == "Sara"

    def test_keys_matched_by_display_name(self, extractor):
        fields = extractor.parse_response('{"Customer Name": "Sara", "PRODUCT": "sofa"}', make_columns())

        assert fields["name"] == "Sara"
        assert fields["product"] == "sofa"

    def test_key_value_lines_when_no_json(self, extractor):
        content = "- **name**: Sara\n- product: blue sofa\nphone: unknown"

        fields = extractor.parse_response(content, make_columns())

        assert fields["name"] == "Sara"
        assert fields["product"] == "blue sofa"
        assert fields["phone"] == SENTINEL

    def test_unparseable_reply_yields_sentinels(self, extractor):
        fields = extractor.parse_response("I cannot help with that.", make_columns())

        assert set(fields.values()) == {SENTINEL}

    def test_list_values_are_joined(self, extractor):
        fields = extractor.parse_response('{"product": ["sofa", "lamp"], "name": null}', make_columns())

        assert fields["product"] == "sofa, lamp"
        assert fields["name"] == SENTINEL
