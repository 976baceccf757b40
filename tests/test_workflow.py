"""Tests for the repair status workflow."""

import json
import threading

import pytest

from core.errors import ConflictError
from tools.shop.workflow import (
    RepairStatus,
    StatusUpdateGuard,
    cancel_status,
    is_terminal,
    next_status,
    status_color,
    status_label,
    status_legend,
)


class TestNextStatus:

    def test_forward_chain(self):
        assert next_status(RepairStatus.PENDING) is RepairStatus.IN_PROGRESS
        assert next_status(RepairStatus.IN_PROGRESS) is RepairStatus.COMPLETED

    @pytest.mark.parametrize("status", [RepairStatus.COMPLETED, RepairStatus.CANCELLED])
    def test_terminal_is_fixed_point(self, status):
        assert next_status(status) is status
        assert next_status(next_status(status)) is status

    def test_unknown_status_passes_through(self):
        assert next_status("ON_HOLD") == "ON_HOLD"
        assert next_status(None) is None

    def test_accepts_names_and_legacy_labels(self):
        assert next_status("pending") is RepairStatus.IN_PROGRESS
        assert next_status("Изпратена оферта") is RepairStatus.IN_PROGRESS
        assert next_status("В процес") is RepairStatus.COMPLETED

    def test_status_is_a_string(self):
        assert isinstance(RepairStatus.PENDING, str)
        assert RepairStatus.IN_PROGRESS == "IN_PROGRESS"
        assert json.dumps({"status": RepairStatus.COMPLETED}) == '{"status": "COMPLETED"}'
        assert RepairStatus.parse(RepairStatus.CANCELLED) is RepairStatus.CANCELLED


class TestCancel:

    @pytest.mark.parametrize("status", list(RepairStatus))
    def test_any_state_cancels(self, status):
        assert cancel_status(status) is RepairStatus.CANCELLED

    def test_cancelling_completed_is_logged(self, caplog):
        with caplog.at_level("WARNING", logger="shop.workflow"):
            cancel_status(RepairStatus.COMPLETED)
        assert "COMPLETED" in caplog.text


class TestDisplay:

    def test_colors(self):
        assert status_color(RepairStatus.PENDING) == "amber"
        assert status_color(RepairStatus.IN_PROGRESS) == "blue"
        assert status_color(RepairStatus.COMPLETED) == "green"
        assert status_color(RepairStatus.CANCELLED) == "red"

    def test_unknown_color_is_gray(self):
        assert status_color("whatever") == "gray"
        assert status_color(None) == "gray"

    def test_labels(self):
        assert status_label(RepairStatus.PENDING, "en") == "Quote sent"
        assert status_label(RepairStatus.CANCELLED, "bg") == "Отказан"
        assert status_label("ON_HOLD", "bg") == "ON_HOLD"

    def test_unsupported_locale_uses_english(self):
        assert status_label(RepairStatus.COMPLETED, "de") == "Completed"

    def test_terminal(self):
        assert is_terminal(RepairStatus.COMPLETED)
        assert is_terminal("Отказан")
        assert not is_terminal(RepairStatus.PENDING)
        assert not is_terminal("junk")

    def test_legend_in_lifecycle_order(self):
        legend = status_legend("en")
        assert [e["status"] for e in legend] == ["PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED"]
        assert legend[0] == {"status": "PENDING", "label": "Quote sent", "color": "amber"}


class TestStatusUpdateGuard:

    def test_second_hold_is_rejected(self):
        guard = StatusUpdateGuard()
        with guard.hold("r1"):
            assert guard.is_updating("r1")
            with pytest.raises(ConflictError):
                with guard.hold("r1"):
                    pass
        assert not guard.is_updating("r1")

    def test_different_ids_do_not_block(self):
        guard = StatusUpdateGuard()
        with guard.hold("r1"):
            with guard.hold("r2"):
                assert guard.is_updating("r2")

    def test_released_after_error(self):
        guard = StatusUpdateGuard()
        with pytest.raises(RuntimeError):
            with guard.hold("r1"):
                raise RuntimeError("boom")
        assert not guard.is_updating("r1")

    def test_concurrent_holders(self):
        guard = StatusUpdateGuard()
        entered = threading.Event()
        release = threading.Event()

        def holder():
            with guard.hold("r1"):
                entered.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        assert entered.wait(5)
        with pytest.raises(ConflictError):
            with guard.hold("r1"):
                pass
        release.set()
        t.join(5)
        assert not guard.is_updating("r1")
