"""
Unit tests for batch classification: reply parsing and the engine.
"""
import json
import re
import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError

from gmail_cleaner.core.ai.classifier import (
    AI_REQUEST_ERROR,
    JSON_PARSE_ERROR,
    UNEXPECTED_REPLY_SHAPE,
    ClassificationEngine,
    MalformedClassification,
    ReplyParseError,
    ValidClassification,
    parse_classification_reply,
    strip_code_fences,
)
from gmail_cleaner.core.ai.providers.base import ClassificationProviderError
from gmail_cleaner.core.database.models import Message
from gmail_cleaner.core.gmail.models import SuggestedAction


def _reply(*items) -> str:
    return json.dumps(list(items))


def _ids_in_prompt(user_prompt: str):
    return re.findall(r'"id": "([^"]+)"', user_prompt)


class TestStripCodeFences:

    @pytest.mark.parametrize("raw", [
        '```json\n[{"id": "1"}]\n```',
        '```JSON [{"id": "1"}]```',
        '```\n[{"id": "1"}]\n```',
        '  [{"id": "1"}]  ',
    ])
    def test_strips_fences(self, raw):
        assert strip_code_fences(raw) == '[{"id": "1"}]'

    def test_empty(self):
        assert strip_code_fences("") == ""
        assert strip_code_fences(None) == ""


class TestParseClassificationReply:

    def test_valid_elements(self):
        parsed = parse_classification_reply(_reply(
            {"id": "m1", "category": "Newsletters", "action": "ARCHIVE", "reasoning": "promo"},
            {"id": "m2", "category": "Work", "action": "keep"},
        ))

        assert parsed == [
            ValidClassification(id="m1", category="Newsletters", action=SuggestedAction.ARCHIVE, reasoning="promo"),
            ValidClassification(id="m2", category="Work", action=SuggestedAction.KEEP, reasoning=""),
        ]

    def test_missing_fields_are_malformed(self):
        parsed = parse_classification_reply('[{"id":"1","category":"Work","action":"keep"}, {"id":"2"}]')

        assert isinstance(parsed[0], ValidClassification)
        assert isinstance(parsed[1], MalformedClassification)
        assert "category" in parsed[1].reason and "action" in parsed[1].reason

    def test_unknown_action_is_rejected(self):
        parsed = parse_classification_reply(_reply({"id": "1", "category": "Work", "action": "forward"}))
        assert isinstance(parsed[0], MalformedClassification)

    def test_non_object_elements_are_malformed(self):
        parsed = parse_classification_reply('["m1", 3, null]')
        assert all(isinstance(p, MalformedClassification) for p in parsed)

    def test_numeric_id_is_coerced(self):
        parsed = parse_classification_reply(_reply({"id": 7, "category": "Work", "action": "keep"}))
        assert parsed[0].id == "7"

    def test_null_reasoning_defaults_to_empty(self):
        parsed = parse_classification_reply(
            _reply({"id": "1", "category": "Work", "action": "keep", "reasoning": None})
        )
        assert parsed[0].reasoning == ""

    def test_not_json(self):
        with pytest.raises(ReplyParseError) as exc_info:
            parse_classification_reply("not json")
        assert exc_info.value.marker == JSON_PARSE_ERROR

    def test_object_instead_of_array(self):
        with pytest.raises(ReplyParseError) as exc_info:
            parse_classification_reply('{"id": "1", "category": "Work", "action": "keep"}')
        assert exc_info.value.marker == UNEXPECTED_REPLY_SHAPE

    def test_fenced_reply(self):
        parsed = parse_classification_reply('```json\n[{"id":"1","category":"Work","action":"delete"}]\n```')
        assert parsed[0].action is SuggestedAction.DELETE


class TestClassificationEngine:
    """classify_pending against the in-memory store"""

    @pytest.mark.asyncio
    async def test_nothing_pending(self, repository, make_provider, user_id):
        provider = make_provider()

        result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 0
        assert result.error is None
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_applies_valid_classifications(self, repository, store_message, db_session, make_provider, user_id):
        store_message("m1")
        store_message("m2")
        provider = make_provider(replies=[_reply(
            {"id": "m1", "category": "Newsletters", "action": "Archive", "reasoning": "promo"},
            {"id": "m2", "category": "Work", "action": "keep"},
        )])

        result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 2
        assert result.error is None
        rows = {r.message_id: r for r in db_session.query(Message).all()}
        assert (rows["m1"].category, rows["m1"].suggested_action, rows["m1"].reasoning) == ("Newsletters", "archive", "promo")
        assert (rows["m2"].category, rows["m2"].suggested_action, rows["m2"].reasoning) == ("Work", "keep", "")
        assert all(r.is_analyzed for r in rows.values())

    @pytest.mark.asyncio
    async def test_not_json_reply_changes_nothing(self, repository, store_message, db_session, make_provider, user_id):
        """Malformed-reply resilience"""
        store_message("m1")
        provider = make_provider(replies=["not json"])

        result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 0
        assert result.error == "JSON Parse Error"
        row = db_session.query(Message).one()
        assert row.is_analyzed is False
        assert row.category is None

    @pytest.mark.asyncio
    async def test_wrong_shape_reply(self, repository, store_message, make_provider, user_id):
        store_message("m1")
        provider = make_provider(replies=['{"results": []}'])

        result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 0
        assert result.error == UNEXPECTED_REPLY_SHAPE

    @pytest.mark.asyncio
    async def test_partial_element_resilience(self, repository, store_message, db_session, make_provider, user_id):
        """A malformed element does not block the valid one next to it"""
        store_message("1")
        store_message("2")
        provider = make_provider(replies=['[{"id":"1","category":"Work","action":"keep"}, {"id":"2"}]'])

        result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 1
        assert result.malformed_count == 1
        rows = {r.message_id: r for r in db_session.query(Message).all()}
        assert rows["1"].is_analyzed is True
        assert rows["2"].is_analyzed is False

    @pytest.mark.asyncio
    async def test_invalid_action_never_stored(self, repository, store_message, db_session, make_provider, user_id):
        store_message("m1")
        provider = make_provider(replies=[_reply({"id": "m1", "category": "Work", "action": "snooze"})])

        result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 0
        row = db_session.query(Message).one()
        assert row.suggested_action is None
        assert row.is_analyzed is False

    @pytest.mark.asyncio
    async def test_provider_failure(self, repository, store_message, make_provider, user_id):
        store_message("m1")
        provider = make_provider(error=ClassificationProviderError("timeout"))

        result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 0
        assert result.error == AI_REQUEST_ERROR
        assert result.selected_count == 1

    @pytest.mark.asyncio
    async def test_batch_ceiling_and_order(self, repository, store_message, make_provider, user_id):
        for i in range(5):
            store_message(f"m{i}", age_minutes=i)
        provider = make_provider()

        await ClassificationEngine(repository, provider, batch_size=3).classify_pending(user_id)

        _, user_prompt = provider.calls[0]
        assert _ids_in_prompt(user_prompt) == ["m0", "m1", "m2"]

    @pytest.mark.asyncio
    async def test_prompt_contents(self, repository, store_message, make_provider, user_id):
        store_message("done", category="Bills", suggested_action="archive", is_analyzed=True)
        store_message("m1", from_address="boss@corp.com", subject="Q3 plan", snippet="x" * 500)
        provider = make_provider()

        await ClassificationEngine(repository, provider, snippet_chars=50).classify_pending(user_id)

        system_prompt, user_prompt = provider.calls[0]
        assert "archive, delete, keep" in system_prompt
        assert "Bills" in system_prompt
        assert '{"id": "<email id>"' in system_prompt
        payload = json.loads(user_prompt[user_prompt.index("["):user_prompt.rindex("]") + 1])
        assert payload == [{
            "id": "m1",
            "from": "boss@corp.com",
            "subject": "Q3 plan",
            "snippet": "x" * 50 + "...",
        }]

    @pytest.mark.asyncio
    async def test_existing_categories_are_reused(self, repository, store_message, db_session, make_provider, user_id):
        """Category consistency: a model echoing the provided categories keeps the label set stable"""
        store_message("old1", category="Work", suggested_action="keep", is_analyzed=True)
        store_message("old2", category="Bills", suggested_action="archive", is_analyzed=True)
        store_message("n1")
        store_message("n2")

        def echo_categories(system_prompt, user_prompt):
            line = next(l for l in system_prompt.splitlines() if l.startswith("Existing categories:"))
            offered = [c.strip() for c in line.split(":", 1)[1].split(",")]
            return _reply(*[
                {"id": mid, "category": offered[i % len(offered)], "action": "keep"}
                for i, mid in enumerate(_ids_in_prompt(user_prompt))
            ])

        provider = make_provider(reply_fn=echo_categories)
        result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 2
        assert repository.find_distinct_categories(user_id) == ["Bills", "Work"]

    @pytest.mark.asyncio
    async def test_duplicate_ids_first_wins(self, repository, store_message, db_session, make_provider, user_id):
        store_message("m1")
        provider = make_provider(replies=[_reply(
            {"id": "m1", "category": "Work", "action": "keep"},
            {"id": "m1", "category": "Spam", "action": "delete"},
        )])

        result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 1
        assert db_session.query(Message).one().category == "Work"

    @pytest.mark.asyncio
    async def test_ids_outside_batch_are_ignored(self, repository, store_message, db_session, make_provider, user_id):
        store_message("done", category="Bills", suggested_action="archive", is_analyzed=True)
        store_message("m1")
        provider = make_provider(replies=[_reply(
            {"id": "done", "category": "Spam", "action": "delete"},
            {"id": "ghost", "category": "Spam", "action": "delete"},
            {"id": "m1", "category": "Work", "action": "keep"},
        )])

        result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 1
        rows = {r.message_id: r for r in db_session.query(Message).all()}
        assert rows["done"].category == "Bills"

    @pytest.mark.asyncio
    async def test_message_deleted_during_run(self, repository, store_message, make_provider, user_id):
        """Concurrent delete shows up as zero affected rows, not an error"""
        store_message("m1")
        store_message("m2")

        def delete_then_reply(system_prompt, user_prompt):
            repository.delete_many(user_id, ["m1"])
            return _reply(
                {"id": "m1", "category": "Work", "action": "keep"},
                {"id": "m2", "category": "Work", "action": "keep"},
            )

        provider = make_provider(reply_fn=delete_then_reply)
        result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 1
        assert result.error is None

    @pytest.mark.asyncio
    async def test_update_failure_does_not_abort_batch(self, repository, store_message, make_provider, user_id):
        store_message("m1")
        store_message("m2")
        provider = make_provider(replies=[_reply(
            {"id": "m1", "category": "Work", "action": "keep"},
            {"id": "m2", "category": "Work", "action": "keep"},
        )])
        original = repository.mark_classified

        def flaky(uid, message_id, **fields):
            if message_id == "m1":
                raise OperationalError("UPDATE", {}, Exception("locked"))
            return original(uid, message_id, **fields)

        with patch.object(repository, "mark_classified", side_effect=flaky):
            result = await ClassificationEngine(repository, provider).classify_pending(user_id)

        assert result.processed_count == 1

    @pytest.mark.asyncio
    async def test_invariant_after_mixed_reply(self, repository, store_message, db_session, make_provider, user_id):
        """Every analyzed message has a category and an allowed action"""
        for mid in ["a", "b", "c", "d"]:
            store_message(mid)
        provider = make_provider(replies=[json.dumps([
            {"id": "a", "category": "Work", "action": "KEEP"},
            {"id": "b", "category": "", "action": "keep"},
            {"id": "c", "category": "Promo", "action": "unsubscribe"},
            {"id": "d", "category": "Promo", "action": " delete "},
        ])])

        await ClassificationEngine(repository, provider).classify_pending(user_id)

        for row in db_session.query(Message).filter(Message.is_analyzed.is_(True)).all():
            assert row.category
            assert row.suggested_action in {"archive", "delete", "keep"}
        assert db_session.query(Message).filter(Message.is_analyzed.is_(True)).count() == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
