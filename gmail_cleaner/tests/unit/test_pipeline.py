"""
End-to-end: sync -> classify -> batch archive against the in-memory store.
"""
import pytest

from gmail_cleaner.core.ai.classifier import ClassificationEngine
from gmail_cleaner.core.database.models import Message
from gmail_cleaner.core.gmail.actions import ReconciliationEngine
from gmail_cleaner.core.gmail.sync import SyncEngine


@pytest.mark.asyncio
async def test_sync_classify_archive(repository, db_session, settings, make_mailbox, make_provider, user_id):
    mailbox = make_mailbox(pages={None: (["m1", "m2"], None)})

    sync_result = await SyncEngine(repository).sync(mailbox, user_id)

    assert sync_result.synced_count == 2
    assert sync_result.next_cursor is None
    rows = db_session.query(Message).all()
    assert len(rows) == 2
    assert not any(r.is_analyzed for r in rows)

    provider = make_provider(replies=[
        '[{"id":"m1","category":"Newsletters","action":"archive","reasoning":"promo"},'
        '{"id":"m2","category":"Work","action":"keep","reasoning":"client email"}]'
    ])
    classify_result = await ClassificationEngine(repository, provider).classify_pending(user_id)

    assert classify_result.processed_count == 2
    assert classify_result.error is None
    system_prompt, _ = provider.calls[0]
    assert "Existing categories: (none yet)" in system_prompt

    rows = {r.message_id: r for r in db_session.query(Message).all()}
    assert (rows["m1"].is_analyzed, rows["m1"].category, rows["m1"].suggested_action, rows["m1"].reasoning) == \
        (True, "Newsletters", "archive", "promo")
    assert (rows["m2"].is_analyzed, rows["m2"].category, rows["m2"].suggested_action, rows["m2"].reasoning) == \
        (True, "Work", "keep", "client email")

    action_result = await ReconciliationEngine(repository, settings).apply_batch_action(
        mailbox, user_id, ["m1"], "archive"
    )

    assert action_result.success is True
    assert action_result.count == 1
    assert [r.message_id for r in db_session.query(Message).all()] == ["m2"]

    # Nothing left to classify
    assert (await ClassificationEngine(repository, provider).classify_pending(user_id)).processed_count == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
