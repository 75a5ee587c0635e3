"""Tests for the dedup window and echo filter."""

import pytest

from livechat.services.chat_adapters.dedup import DedupWindow, EchoFilter


class TestDedupWindow:
    """Test cases for DedupWindow."""

    def test_add_reports_new_ids(self):
        window = DedupWindow(capacity=10)

        assert window.add("a") is True
        assert window.add("a") is False
        assert "a" in window
        assert len(window) == 1

    def test_oldest_evicted_first(self):
        window = DedupWindow(capacity=3)
        for item_id in ("a", "b", "c", "d"):
            window.add(item_id)

        assert "a" not in window
        assert all(i in window for i in ("b", "c", "d"))
        assert len(window) == 3

    def test_evicted_id_is_new_again(self):
        window = DedupWindow(capacity=1)
        window.add("a")
        window.add("b")

        assert window.add("a") is True

    def test_clear(self):
        window = DedupWindow()
        window.add("a")
        window.clear()

        assert len(window) == 0
        assert window.seen("a") is False

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            DedupWindow(capacity=0)


class TestEchoFilter:
    """Test cases for EchoFilter."""

    def test_consume_fires_once(self):
        echo = EchoFilter()
        echo.remember("42")

        assert echo.consume("42") is True
        assert echo.consume("42") is False

    def test_unknown_id(self):
        assert EchoFilter().consume("nope") is False

    def test_keeps_only_last_five(self):
        echo = EchoFilter(capacity=5)
        for i in range(6):
            echo.remember(str(i))

        assert len(echo) == 5
        assert echo.consume("0") is False
        assert echo.consume("5") is True
