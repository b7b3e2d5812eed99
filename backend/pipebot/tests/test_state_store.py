import json
import time
from unittest.mock import MagicMock

import pytest
import redis

from pipebot.conversation.conversation_state import ConversationState, ScenarioKind
from pipebot.conversation.state_store import ConversationStateNotFound, ConversationStore


# ------------------------------------------------------------------
# IN-MEMORY
# ------------------------------------------------------------------

def test_save_and_load(store):
    state = ConversationState(channel="C1")
    state.record_answer("repository api")
    store.save(state)

    loaded = store.load("C1")
    assert loaded.pending_question_index == 1
    assert loaded.collected_answers == ["repository api"]
    assert loaded.scenario_kind == ScenarioKind.AWAITING_INTENT


def test_saved_state_is_a_copy(store):
    state = ConversationState(channel="C1")
    store.save(state)
    state.record_answer("not saved")

    assert store.load("C1").collected_answers == []


def test_load_missing_channel(store):
    with pytest.raises(ConversationStateNotFound):
        store.load("nope")
    assert store.get("nope") is None


def test_channels_are_isolated(store):
    store.save(ConversationState(channel="C1", pending_question_index=1, collected_answers=["a"]))
    store.save(ConversationState(channel="C2"))

    store.delete("C2")

    assert store.get("C2") is None
    assert store.get("C1").collected_answers == ["a"]


def test_last_write_wins(store):
    store.save(ConversationState(channel="C1", pending_question_index=0))
    store.save(ConversationState(channel="C1", pending_question_index=1, collected_answers=["x"]))

    assert store.load("C1").pending_question_index == 1


def test_abandoned_conversation_expires():
    store = ConversationStore(redis_url="", ttl=60)
    store.save(ConversationState(channel="C1", updated_at=time.time() - 120))

    assert store.get("C1") is None


def test_lock_is_per_channel(store):
    with store.lock("C1"):
        c1_lock = store._fallback_locks["C1"]
        assert c1_lock.locked()
        with store.lock("C2"):
            assert store._fallback_locks["C2"].locked()
    assert not c1_lock.locked()


# ------------------------------------------------------------------
# REDIS
# ------------------------------------------------------------------

def test_redis_unavailable_falls_back_to_memory(mocker):
    client = MagicMock()
    client.ping.side_effect = redis.ConnectionError("refused")
    mocker.patch("pipebot.conversation.state_store.redis.from_url", return_value=client)

    store = ConversationStore(redis_url="redis://localhost:6379/0")
    store.save(ConversationState(channel="C1"))

    assert store.get("C1") is not None
    client.setex.assert_not_called()


def test_redis_save_uses_ttl(mocker):
    client = MagicMock()
    mocker.patch("pipebot.conversation.state_store.redis.from_url", return_value=client)

    store = ConversationStore(redis_url="redis://localhost:6379/0", ttl=90)
    store.save(ConversationState(channel="C1", collected_answers=["a"], pending_question_index=1))

    key, ttl, payload = client.setex.call_args.args
    assert key == "conversation:state:C1"
    assert ttl == 90
    assert json.loads(payload)["collected_answers"] == ["a"]


def test_redis_load_and_lock(mocker):
    client = MagicMock()
    client.get.return_value = json.dumps(ConversationState(channel="C1").to_dict())
    mocker.patch("pipebot.conversation.state_store.redis.from_url", return_value=client)

    store = ConversationStore(redis_url="redis://localhost:6379/0")
    with store.lock("C1"):
        state = store.load("C1")

    assert state.channel == "C1"
    assert client.lock.call_args.args[0] == "conversation:lock:C1"


def test_redis_lock_error_falls_back_to_local_lock(mocker):
    client = MagicMock()
    client.lock.return_value.acquire.side_effect = redis.ConnectionError("connection reset")
    mocker.patch("pipebot.conversation.state_store.redis.from_url", return_value=client)

    store = ConversationStore(redis_url="redis://localhost:6379/0")
    with store.lock("C1"):
        assert store._fallback_locks["C1"].locked()

    client.lock.return_value.release.assert_not_called()


def test_redis_lock_timeout_falls_back_to_local_lock(mocker):
    client = MagicMock()
    client.lock.return_value.acquire.return_value = False
    mocker.patch("pipebot.conversation.state_store.redis.from_url", return_value=client)

    store = ConversationStore(redis_url="redis://localhost:6379/0")
    with store.lock("C1"):
        assert store._fallback_locks["C1"].locked()


def test_redis_lock_is_released(mocker):
    client = MagicMock()
    client.lock.return_value.acquire.return_value = True
    mocker.patch("pipebot.conversation.state_store.redis.from_url", return_value=client)

    store = ConversationStore(redis_url="redis://localhost:6379/0")
    with store.lock("C1"):
        pass

    client.lock.return_value.release.assert_called_once()
    assert "C1" not in store._fallback_locks


# ------------------------------------------------------------------
# FALLBACK CLEANUP
# ------------------------------------------------------------------

def test_lock_is_dropped_after_conversation_ends(store):
    with store.lock("C1"):
        store.save(ConversationState(channel="C1"))
    assert "C1" in store._fallback_locks

    with store.lock("C1"):
        store.delete("C1")

    assert "C1" not in store._fallback_locks
    assert "C1" not in store._fallback_lock_users


def test_lock_without_state_is_not_kept(store):
    with store.lock("C1"):
        pass

    assert store._fallback_locks == {}


def test_expired_conversations_are_swept_on_save():
    store = ConversationStore(redis_url="", ttl=60)
    with store.lock("C1"):
        store.save(ConversationState(channel="C1", updated_at=time.time() - 120))

    store.save(ConversationState(channel="C2"))

    assert "C1" not in store._fallback_store
    assert "C1" not in store._fallback_locks
    assert "C2" in store._fallback_store
