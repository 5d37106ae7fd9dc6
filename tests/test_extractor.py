"""Tests for smtp2mqtt.extractor."""

from __future__ import annotations

import copy

import pytest

from smtp2mqtt.config import FieldSpec
from smtp2mqtt.extractor import FieldExtractor
from smtp2mqtt.formatter import format_value
from smtp2mqtt.parser import ParsedMessage
from smtp2mqtt.query import evaluate
from smtp2mqtt.transform import TransformSandbox
from smtp2mqtt.values import ABSENT, Matches


def make_extractor(**fields) -> FieldExtractor:
    specs = {
        name: spec if isinstance(spec, FieldSpec) else FieldSpec.model_validate(spec)
        for name, spec in fields.items()
    }
    return FieldExtractor(specs, TransformSandbox(timeout_seconds=1.0))


class TestFieldExtractor:
    @pytest.mark.asyncio
    async def test_plain_query(self, parsed_message: ParsedMessage):
        extractor = make_extractor(subject="$.subject", sender="$.from.value[0].address")
        fields = await extractor.extract(parsed_message)
        assert fields == {"subject": "Test Subject", "sender": "sender@example.com"}

    @pytest.mark.asyncio
    async def test_no_transform_equals_formatted_query(self, parsed_multipart: ParsedMessage):
        extractor = make_extractor(recipients="$.to.value[*].address")
        fields = await extractor.extract(parsed_multipart)
        expected = format_value(Matches(tuple(evaluate(parsed_multipart.to_tree(), "$.to.value[*].address"))))
        assert fields["recipients"] == expected == "one@example.com,two@example.com"

    @pytest.mark.asyncio
    async def test_as_json_single_match_is_not_an_array(self, parsed_message: ParsedMessage):
        extractor = make_extractor(sender={"query": "$.from.value[0]", "asJson": True})
        fields = await extractor.extract(parsed_message)
        assert fields["sender"] == '{"name":"","address":"sender@example.com"}'

    @pytest.mark.asyncio
    async def test_as_json_many_matches_is_an_array(self, parsed_multipart: ParsedMessage):
        extractor = make_extractor(to={"query": "$.to.value[*].address", "as_json": True})
        fields = await extractor.extract(parsed_multipart)
        assert fields["to"] == '["one@example.com","two@example.com"]'

    @pytest.mark.asyncio
    async def test_transform(self, parsed_message: ParsedMessage):
        extractor = make_extractor(subject={"query": "$.subject", "transform": "value.upper()"})
        fields = await extractor.extract(parsed_message)
        assert fields["subject"] == "TEST SUBJECT"

    @pytest.mark.asyncio
    async def test_transform_sees_message(self, parsed_message: ParsedMessage):
        extractor = make_extractor(
            user={"query": "$.subject", "transform": "message.envelope.user + ':' + value"},
        )
        fields = await extractor.extract(parsed_message)
        assert fields["user"] == "alice:Test Subject"

    @pytest.mark.asyncio
    async def test_transform_result_is_formatted(self, parsed_message: ParsedMessage):
        extractor = make_extractor(
            length={"query": "$.subject", "transform": "len(value)"},
            parts={"query": "$.subject", "transform": "value.split(' ')", "asJson": True},
        )
        fields = await extractor.extract(parsed_message)
        assert fields["length"] == "12"
        assert fields["parts"] == '["Test","Subject"]'

    @pytest.mark.asyncio
    async def test_value_as_json(self, parsed_message: ParsedMessage):
        extractor = make_extractor(
            sender={
                "query": "$.from.value[0]",
                "transform": "from_json(value)['address']",
                "valueAsJson": True,
            },
        )
        fields = await extractor.extract(parsed_message)
        assert fields["sender"] == "sender@example.com"

    @pytest.mark.asyncio
    async def test_failing_transform_keeps_value(self, parsed_message: ParsedMessage):
        extractor = make_extractor(
            subject={"query": "$.subject", "transform": "1 / 0"},
            quoted={"query": "$.subject", "transform": "1 / 0", "valueAsJson": True},
        )
        fields = await extractor.extract(parsed_message)
        assert fields["subject"] == "Test Subject"
        assert fields["quoted"] == '"Test Subject"'

    @pytest.mark.asyncio
    async def test_failing_transform_is_not_json_encoded_twice(self, parsed_message: ParsedMessage):
        extractor = make_extractor(
            sender={
                "query": "$.from.value[0]",
                "transform": "1 / 0",
                "valueAsJson": True,
                "asJson": True,
            },
            subject={"query": "$.subject", "transform": "1 / 0", "asJson": True},
        )
        fields = await extractor.extract(parsed_message)
        assert fields["sender"] == '{"name":"","address":"sender@example.com"}'
        assert fields["subject"] == "Test Subject"

    @pytest.mark.asyncio
    async def test_failing_transform_without_match_is_absent(self, parsed_message: ParsedMessage):
        extractor = make_extractor(missing={"query": "$.nope", "transform": "value.upper()"})
        fields = await extractor.extract(parsed_message)
        assert fields["missing"] is ABSENT

    @pytest.mark.asyncio
    async def test_failing_transform_does_not_affect_other_fields(
        self, parsed_message: ParsedMessage
    ):
        extractor = make_extractor(
            broken={"query": "$.subject", "transform": "undefined_name"},
            sender="$.from.value[0].address",
        )
        fields = await extractor.extract(parsed_message)
        assert fields["sender"] == "sender@example.com"

    @pytest.mark.asyncio
    async def test_no_match_is_absent(self, parsed_message: ParsedMessage):
        extractor = make_extractor(missing="$.nope")
        fields = await extractor.extract(parsed_message)
        assert fields["missing"] is ABSENT

    @pytest.mark.asyncio
    async def test_transform_can_fill_absent(self, parsed_message: ParsedMessage):
        extractor = make_extractor(missing={"query": "$.nope", "transform": "value or 'none'"})
        fields = await extractor.extract(parsed_message)
        assert fields["missing"] == "none"

    @pytest.mark.asyncio
    async def test_transform_returning_none_is_absent(self, parsed_message: ParsedMessage):
        extractor = make_extractor(subject={"query": "$.subject", "transform": "None"})
        fields = await extractor.extract(parsed_message)
        assert fields["subject"] is ABSENT

    @pytest.mark.asyncio
    async def test_invalid_query_is_absent(self, parsed_message: ParsedMessage):
        extractor = make_extractor(bad="$.subject[", subject="$.subject")
        fields = await extractor.extract(parsed_message)
        assert fields["bad"] is ABSENT
        assert fields["subject"] == "Test Subject"

    @pytest.mark.asyncio
    async def test_control_fields_are_extracted(self, parsed_message: ParsedMessage):
        extractor = make_extractor(**{"$event": {"query": "$.subject", "transform": "'mail'"}})
        fields = await extractor.extract(parsed_message)
        assert fields == {"$event": "mail"}

    @pytest.mark.asyncio
    async def test_idempotent_and_read_only(self, parsed_message: ParsedMessage):
        extractor = make_extractor(
            subject={"query": "$.subject", "transform": "message['headers'].clear() or value"},
            sender="$.from.value[0].address",
        )
        before = copy.deepcopy(parsed_message.to_tree())
        first = await extractor.extract(parsed_message)
        second = await extractor.extract(parsed_message)
        assert first == second
        assert parsed_message.to_tree() == before

    @pytest.mark.asyncio
    async def test_no_fields(self, parsed_message: ParsedMessage):
        assert await make_extractor().extract(parsed_message) == {}
