"""Tests for ReloadNotifier."""

import logging as _logging
import unittest.mock as _mock

import pytest as _pytest

import kvconfig.reload as reload


class TestReloadNotifier:
    """Tests for callback registration and notification."""

    def test_notify_calls_callbacks_with_provider(self) -> None:
        notifier = reload.ReloadNotifier()
        callback = _mock.Mock()
        notifier.register(callback)

        sentinel = object()
        notifier.notify(sentinel)  # type: ignore[arg-type]

        callback.assert_called_once_with(sentinel)
        assert notifier.reload_count == 1

    def test_unregister(self) -> None:
        notifier = reload.ReloadNotifier()
        callback = _mock.Mock()
        unregister = notifier.register(callback)
        unregister()
        unregister()

        notifier.notify(_mock.Mock())

        callback.assert_not_called()
        assert len(notifier) == 0

    def test_failing_callback_is_logged_and_others_still_run(
        self,
        caplog: _pytest.LogCaptureFixture,
    ) -> None:
        notifier = reload.ReloadNotifier()
        after = _mock.Mock()
        notifier.register(_mock.Mock(side_effect=RuntimeError("bad callback")))
        notifier.register(after)

        with caplog.at_level(_logging.WARNING, logger="kvconfig.reload"):
            notifier.notify(_mock.Mock())

        after.assert_called_once()
        assert "bad callback" in caplog.text
