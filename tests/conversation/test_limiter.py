"""Tests for ConversationLimiter."""

import pytest

from memkeeper.conversation import ConversationLimiter


class TestConversationLimiter:
    """Tests for the concurrent conversation cap."""

    def test_acquire_up_to_capacity(self):
        limiter = ConversationLimiter(2)
        assert limiter.try_acquire()
        assert limiter.try_acquire()
        assert not limiter.try_acquire()
        assert limiter.active == 2
        assert limiter.available == 0

    def test_release_frees_slot(self):
        limiter = ConversationLimiter(1)
        limiter.try_acquire()
        limiter.release()
        assert limiter.try_acquire()

    def test_release_without_acquire(self):
        with pytest.raises(RuntimeError):
            ConversationLimiter(1).release()

    @pytest.mark.parametrize("capacity", [0, -3])
    def test_invalid_capacity(self, capacity):
        with pytest.raises(ValueError):
            ConversationLimiter(capacity)

    def test_grow(self):
        limiter = ConversationLimiter(1)
        limiter.try_acquire()
        limiter.resize(3)

        assert limiter.capacity == 3
        assert limiter.try_acquire()
        assert limiter.try_acquire()
        assert not limiter.try_acquire()

    def test_shrink_below_active(self):
        """Running conversations finish; new ones wait until under the new cap."""
        limiter = ConversationLimiter(3)
        for _ in range(3):
            limiter.try_acquire()

        limiter.resize(1)
        assert limiter.available == 0
        assert not limiter.try_acquire()

        limiter.release()
        limiter.release()
        assert not limiter.try_acquire()
        limiter.release()
        assert limiter.try_acquire()

    def test_resize_rejects_zero(self):
        with pytest.raises(ValueError):
            ConversationLimiter(2).resize(0)
