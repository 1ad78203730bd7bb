"""Tests for the owner-checked statistics lock."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import redis

from builds_collector.utils import redis_lock


@pytest.fixture
def fake_redis():
    client = MagicMock()
    with patch.object(redis_lock, "get_redis", return_value=client):
        yield client


def test_lock_name():
    assert redis_lock.statistics_lock_name("Mage", "Frost", 12669) == "lock:statistics:Mage:Frost:12669"


def test_acquire_returns_owner_token(fake_redis):
    fake_redis.set.return_value = True

    token = redis_lock.acquire_redis_lock("lock:a", timeout=60)

    assert token
    fake_redis.set.assert_called_once_with("lock:a", token, nx=True, ex=60)


def test_acquire_held_lock(fake_redis):
    fake_redis.set.return_value = None
    assert redis_lock.acquire_redis_lock("lock:a", timeout=60) is None


def test_tokens_differ_between_acquisitions(fake_redis):
    fake_redis.set.return_value = True
    assert redis_lock.acquire_redis_lock("lock:a", 60) != redis_lock.acquire_redis_lock("lock:a", 60)


def test_acquire_proceeds_when_redis_is_down(fake_redis):
    fake_redis.set.side_effect = redis.ConnectionError("refused")
    assert redis_lock.acquire_redis_lock("lock:a", timeout=60)


def test_release_passes_token_to_script(fake_redis):
    fake_redis.eval.return_value = 1

    assert redis_lock.release_redis_lock("lock:a", "tok") is True
    args = fake_redis.eval.call_args.args
    assert args[1:] == (1, "lock:a", "tok")


def test_release_of_lost_lock(fake_redis):
    fake_redis.eval.return_value = 0
    assert redis_lock.release_redis_lock("lock:a", "tok") is False


def test_release_when_redis_is_down(fake_redis):
    fake_redis.eval.side_effect = redis.ConnectionError("refused")
    assert redis_lock.release_redis_lock("lock:a", "tok") is False
