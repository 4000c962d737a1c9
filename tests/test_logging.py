"""Tests for loguru logging in treekit.

This module verifies that logging is disabled by default and that
structured log records are produced when enabled, covering model loading,
prediction calls, and the enable_logging handle lifecycle.
"""

from __future__ import annotations

import contextlib
import io
import re
import sys
import warnings
from collections.abc import Generator
from typing import Any, NamedTuple
from unittest import mock

import loguru
import pytest
from loguru import logger
from pytest_check import check

from treekit.config import TreekitSettings
from treekit.exceptions import InferenceExhaustedError, ModelFormatError
from treekit.logging import (
    PACKAGE_NAME,
    PREDICTION_LEVEL,
    PREDICTION_LEVEL_NUMBER,
    LoggingHandle,
    _register_prediction_level,
    enable_logging,
)
from treekit.model import LocalModel


class LogSink(NamedTuple):
    """Log sink with records list and handler ID for cleanup.

    Attributes:
        records (list[loguru.Record]): List that accumulates log record dictionaries.
        handler_id (int): Logger handler ID for cleanup.
    """

    records: list[loguru.Record]
    handler_id: int


def _make_resource() -> dict[str, Any]:
    """Build a one-split classification model resource."""
    return {
        "resource": "model/logging",
        "object": {
            "objective_fields": ["000001"],
            "model": {
                "fields": {
                    "000000": {"name": "temperature", "optype": "numeric", "column_number": 0},
                    "000001": {"name": "alarm", "optype": "categorical", "column_number": 1},
                },
                "root": {
                    "id": 0,
                    "output": "off",
                    "count": 10,
                    "distribution": [["off", 7], ["on", 3]],
                    "children": [
                        {
                            "id": 1,
                            "output": "on",
                            "count": 3,
                            "distribution": [["on", 3]],
                            "predicate": {"operator": ">", "field": "000000", "value": 80},
                        },
                        {
                            "id": 2,
                            "output": "off",
                            "count": 7,
                            "distribution": [["off", 7]],
                            "predicate": {"operator": "<=", "field": "000000", "value": 80},
                        },
                    ],
                },
            },
        },
    }


def _make_model() -> LocalModel:
    """Load the shared model with default settings."""
    return LocalModel.from_resource(_make_resource(), settings=TreekitSettings())


def _treekit_records(records: list[loguru.Record]) -> list[loguru.Record]:
    """Keep only records emitted from the treekit package."""
    return [record for record in records if (record["name"] or "").startswith(PACKAGE_NAME)]


@contextlib.contextmanager
def capturing_sink(*, enable_treekit: bool = True) -> Generator[list[loguru.Record]]:
    """Context manager that adds a loguru sink and yields the captured records list.

    Pass `enable_treekit=False` when testing state after a `LoggingHandle` has
    already been disabled, so the sink observes whether treekit records flow
    without this helper re-enabling the logger.

    Args:
        enable_treekit (bool): When True (default), enables the treekit logger
            for the duration of the block and disables it on exit.

    Yields:
        Generator[list[loguru.Record]]: Records captured while the context is active.
    """
    captured_records: list[loguru.Record] = []

    def _sink(message: loguru.Message) -> None:
        captured_records.append(message.record)

    handler_id = logger.add(_sink)
    if enable_treekit:
        logger.enable(PACKAGE_NAME)
    try:
        yield captured_records
    finally:
        if enable_treekit:
            logger.disable(PACKAGE_NAME)
        logger.remove(handler_id)


@pytest.fixture(autouse=True)
def restore_active_ids() -> Generator[None]:
    """Save and restore LoggingHandle._active_ids around each test.

    LoggingHandle._active_ids is shared across the process, so a test that
    fails before cleanup would leak handler IDs into later tests.

    Yields:
        None: Nothing; used only for setup/teardown side effects.
    """
    # Arrange - snapshot active IDs before the test runs
    saved_ids: set[int] = set(LoggingHandle._active_ids)

    yield

    # Cleanup - remove handlers added during the test, keeping the set's identity
    added_ids = LoggingHandle._active_ids - saved_ids
    for handler_id in added_ids:
        with contextlib.suppress(ValueError):
            logger.remove(handler_id)
    LoggingHandle._active_ids.clear()
    LoggingHandle._active_ids.update(saved_ids)


@pytest.fixture
def log_sink() -> Generator[LogSink]:
    """Create a sink that captures treekit log records for testing.

    Yields:
        Generator[LogSink]: Named tuple with records list and handler_id for cleanup.
    """
    # Arrange - create list to capture records
    captured_records: list[loguru.Record] = []

    def sink(message: loguru.Message) -> None:
        captured_records.append(message.record)

    # Act - add sink and enable treekit logging
    handler_id = logger.add(sink)
    logger.enable(PACKAGE_NAME)

    yield LogSink(records=captured_records, handler_id=handler_id)

    # Cleanup - disable and remove handler
    logger.disable(PACKAGE_NAME)
    logger.remove(handler_id)


def test_logging_disabled_by_default() -> None:
    """Verify no log records are captured when logging is disabled.

    Given: treekit logging disabled, a sink capturing all output
    When: A model is loaded and used for predictions
    Then: No treekit log records are captured
    """
    # Arrange - explicitly disable to protect against test ordering issues
    logger.disable(PACKAGE_NAME)

    # Act & Assert
    with capturing_sink(enable_treekit=False) as captured_records:
        model = _make_model()
        model.predict({"temperature": 91.0})
        model.predict({"humidity": 0.4})

        with check:
            assert len(_treekit_records(captured_records)) == 0, "No treekit logs should be captured when disabled"


def test_model_loading_logs_info(log_sink: LogSink) -> None:
    """Verify loading a model emits an INFO record with its shape.

    Args:
        log_sink (LogSink): Fixture providing log sink for capturing records.
    """
    # Act
    _make_model()

    # Assert
    info_records = [r for r in log_sink.records if r["level"].name == "INFO"]
    with check:
        assert len(info_records) == 1, "Loading should produce exactly one INFO record"
    extra = info_records[0]["extra"]
    with check:
        assert extra.get("resource_id") == "model/logging"
    with check:
        assert extra.get("node_count") == 3
    with check:
        assert extra.get("regression") is False
    with check:
        assert extra.get("objective_id") == "000001"


def test_model_loading_failure_logs_warning(log_sink: LogSink) -> None:
    """Verify a malformed resource logs a WARNING before the error propagates.

    Args:
        log_sink (LogSink): Fixture providing log sink for capturing records.
    """
    # Arrange
    resource = _make_resource()
    del resource["object"]["model"]["root"]

    # Act
    with pytest.raises(ModelFormatError):
        LocalModel.from_resource(resource, settings=TreekitSettings())

    # Assert
    warning_records = [r for r in log_sink.records if r["level"].name == "WARNING"]
    with check:
        assert len(warning_records) == 1
    with check:
        assert warning_records[0]["extra"].get("error_type") == "ModelFormatError"


class TestPredictionLogging:
    """Tests for records emitted around LocalModel.predict."""

    def test_prediction_entry_and_result(self, log_sink: LogSink) -> None:
        """Each prediction logs a PREDICTION entry and a DEBUG result.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Arrange
        model = _make_model()
        log_sink.records.clear()

        # Act
        model.predict({"temperature": 91.0})

        # Assert
        entry_records = [r for r in log_sink.records if r["level"].name == PREDICTION_LEVEL]
        result_records = [r for r in log_sink.records if r["message"] == "Prediction result"]
        with check:
            assert len(entry_records) == 1
        with check:
            assert entry_records[0]["message"] == "Prediction requested: model/logging"
        with check:
            assert entry_records[0]["extra"].get("missing_strategy") == "last_prediction"
        with check:
            assert len(result_records) == 1
        with check:
            assert result_records[0]["level"].name == "DEBUG"
        with check:
            assert result_records[0]["extra"].get("prediction") == "on"
        with check:
            assert result_records[0]["extra"].get("depth") == 1

    def test_failed_prediction_logs_warning(self, log_sink: LogSink) -> None:
        """A strict prediction that stops early logs a WARNING and re-raises.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Arrange
        model = _make_model()

        # Act
        with pytest.raises(InferenceExhaustedError):
            model.predict({}, strict=True)

        # Assert
        warning_records = [r for r in log_sink.records if r["level"].name == "WARNING"]
        with check:
            assert len(warning_records) == 1
        with check:
            assert warning_records[0]["message"] == "Prediction failed: model/logging"
        with check:
            assert warning_records[0]["extra"].get("error_type") == "InferenceExhaustedError"

    def test_ignored_input_fields_warn(self, log_sink: LogSink) -> None:
        """Input keys that are not model inputs are reported once per call.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Arrange
        model = _make_model()

        # Act
        model.predict({"temperature": 50.0, "humidity": 0.4, "alarm": "on"})

        # Assert
        warning_records = [r for r in log_sink.records if r["level"].name == "WARNING"]
        with check:
            assert len(warning_records) == 1
        with check:
            assert sorted(warning_records[0]["extra"].get("fields", [])) == ["alarm", "humidity"]

    def test_fan_out_logs_debug(self, log_sink: LogSink) -> None:
        """A proportional walk logs where it follows every branch.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Arrange
        model = _make_model()

        # Act
        model.predict({}, missing_strategy="proportional")

        # Assert
        fan_out_records = [r for r in log_sink.records if "following every branch" in r["message"]]
        with check:
            assert len(fan_out_records) == 1
        with check:
            assert fan_out_records[0]["extra"].get("branches") == 2


class TestPredictionLevelRegistration:
    """Tests for PREDICTION custom log level registration edge cases."""

    def test_prediction_level_registered_with_correct_number(self) -> None:
        """Verify the PREDICTION level is registered with the expected numeric value at import time."""
        # Act
        level = logger.level(PREDICTION_LEVEL)

        # Assert
        with check:
            assert level.no == PREDICTION_LEVEL_NUMBER, (
                f"PREDICTION level should have numeric value {PREDICTION_LEVEL_NUMBER}, got {level.no}"
            )

    def test_duplicate_level_wrong_number_warns_not_raises(self) -> None:
        """Verify a numeric mismatch on PREDICTION registration issues a warning, not an exception."""
        # Arrange - fake an already-registered level with a different number
        fake_level = mock.MagicMock(spec=["no"])
        fake_level.no = PREDICTION_LEVEL_NUMBER + 1

        with (
            mock.patch("treekit.logging.logger.level", return_value=fake_level),
            warnings.catch_warnings(record=True) as caught,
        ):
            warnings.simplefilter("always")
            # Act
            _register_prediction_level()

        # Assert
        with check:
            assert len(caught) == 1, "Should have issued exactly one warning"
        with check:
            assert issubclass(caught[0].category, UserWarning)
        with check:
            assert "already registered with numeric value" in str(caught[0].message)
        with check:
            assert str(PREDICTION_LEVEL_NUMBER) in str(caught[0].message)


class TestEnableLoggingLifecycle:
    """Tests for enable_logging handle creation, disable, context manager, and idempotency."""

    def test_enable_logging_returns_logging_handle(self) -> None:
        """Verify enable_logging returns a LoggingHandle with an integer handler id."""
        # Act
        handle = enable_logging()

        # Assert
        with check:
            assert isinstance(handle, LoggingHandle)
        with check:
            assert isinstance(handle.handler_id, int), "handler_id should be an integer"

        # Cleanup
        handle.disable()

    def test_context_manager_captures_and_cleans_up(self, log_sink: LogSink) -> None:
        """Records flow inside the block and the handler is removed on exit.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Act
        with enable_logging() as handle:
            _make_model().predict({"temperature": 20.0})

        # Assert
        with check:
            assert len(_treekit_records(log_sink.records)) > 0, "Should have captured treekit log records"
        with check:
            assert handle.handler_id is None, "handler_id should be None after the block exits"

    def test_enable_logging_idempotency(self) -> None:
        """Verify calling enable_logging twice returns independent handles."""
        # Act
        handle1 = enable_logging()
        handle2 = enable_logging()

        # Assert
        with check:
            assert handle1.handler_id != handle2.handler_id, "Each call should create a distinct handler"

        # Cleanup
        handle1.disable()
        handle2.disable()

    def test_concurrent_handle_independence_and_lifecycle(self) -> None:
        """Disabling one of two handles keeps logs flowing; disabling both stops them."""
        # Arrange
        handle1 = enable_logging(level="DEBUG")
        handle2 = enable_logging(level="DEBUG")
        model = _make_model()

        with capturing_sink() as captured_records:
            # Act - disable handle1 only
            handle1.disable()
            model.predict({"temperature": 85.0})

            # Assert - handle2 still keeps treekit enabled
            with check:
                assert len(_treekit_records(captured_records)) > 0, "Logs should still flow after disabling handle1"

            # Act - disable the last handle
            captured_records.clear()
            handle2.disable()
            model.predict({"temperature": 85.0})

            # Assert
            with check:
                assert len(_treekit_records(captured_records)) == 0, "Logs should stop after all handles are disabled"

    def test_disable_double_call_safe(self) -> None:
        """Verify calling disable() twice does not raise."""
        # Arrange
        handle = enable_logging()

        # Act & Assert - should not raise
        handle.disable()
        handle.disable()

    @pytest.mark.parametrize("handle_count", [1, 2], ids=["single-handle", "two-handles"])
    def test_disable_all_handles_stops_logging(self, handle_count: int) -> None:
        """Verify treekit logging is re-disabled after all active handles are disabled.

        Args:
            handle_count (int): Number of handles to create and disable before asserting.
        """
        # Arrange
        handles = [enable_logging() for _ in range(handle_count)]
        for handle in handles:
            handle.disable()

        with capturing_sink(enable_treekit=False) as captured_records:
            # Act
            _make_model().predict({"temperature": 10.0})

            # Assert
            with check:
                assert len(_treekit_records(captured_records)) == 0, (
                    f"No treekit logs should be captured after all {handle_count} handle(s) are disabled"
                )

    def test_context_manager_exit_cleans_up_on_exception(self) -> None:
        """Verify __exit__ removes the handler even when the block raises.

        Raises:
            RuntimeError: Intentionally raised inside the context to test cleanup under failure.
        """
        # Arrange
        handle_ref: list[LoggingHandle] = []

        # Act & Assert
        with pytest.raises(RuntimeError, match="simulated error"), enable_logging() as handle:
            handle_ref.append(handle)
            raise RuntimeError("simulated error")

        with check:
            assert handle_ref[0].handler_id is None, "handler_id should be None after exception in context manager"

    def test_get_active_handle_count_tracks_handles(self) -> None:
        """The active handle count follows enable and disable calls."""
        # Arrange
        baseline_count = LoggingHandle.get_active_handle_count()

        # Act
        handle1 = enable_logging()
        handle2 = enable_logging()
        after_enable = LoggingHandle.get_active_handle_count()
        handle1.disable()
        after_first_disable = LoggingHandle.get_active_handle_count()
        handle2.disable()

        # Assert
        with check:
            assert after_enable == baseline_count + 2
        with check:
            assert after_first_disable == baseline_count + 1
        with check:
            assert LoggingHandle.get_active_handle_count() == baseline_count


class TestEnableLoggingFiltering:
    """Tests for enable_logging level filtering."""

    @pytest.mark.parametrize(
        ("level", "present_levels", "absent_levels"),
        [
            ("PREDICTION", ["PREDICTION", "WARNING"], ["INFO", "DEBUG"]),
            ("DEBUG", ["DEBUG", "INFO", "PREDICTION", "WARNING"], []),
            ("WARNING", ["WARNING"], ["PREDICTION", "INFO", "DEBUG"]),
        ],
        ids=["default-prediction-level", "debug-level-captures-all", "warning-level-excludes-prediction"],
    )
    def test_enable_logging_level_filtering(
        self,
        monkeypatch: pytest.MonkeyPatch,
        level: str,
        present_levels: list[str],
        absent_levels: list[str],
    ) -> None:
        """Verify the handler writes only records at or above the configured level.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest fixture for patching sys.stderr safely.
            level (str): The log level passed to enable_logging.
            present_levels (list[str]): Level names that must appear in stderr output.
            absent_levels (list[str]): Level names that must not appear in stderr output.
        """
        # Arrange
        captured_stderr = io.StringIO()
        monkeypatch.setattr(sys, "stderr", captured_stderr)
        handle = enable_logging(level=level)  # type: ignore[arg-type]

        # Act
        model = _make_model()  # INFO (20) + DEBUG (10)
        model.predict({"temperature": 95.0})  # PREDICTION (25) + DEBUG (10)
        with contextlib.suppress(InferenceExhaustedError):
            model.predict({}, strict=True)  # PREDICTION (25) + WARNING (30)

        handle.disable()
        stderr_output = captured_stderr.getvalue()

        # Assert
        for expected_level in present_levels:
            with check:
                assert expected_level in stderr_output, f"Should have {expected_level} logs in stderr (level={level})"
        for excluded_level in absent_levels:
            with check:
                assert excluded_level not in stderr_output, (
                    f"Should NOT have {excluded_level} logs in stderr (level={level})"
                )


class TestEnableLoggingFormatting:
    """Tests for enable_logging log_format parameter."""

    @pytest.mark.parametrize(
        ("log_format", "expected_present", "expected_absent"),
        [
            ("short", ["predict - Prediction requested"], ["treekit.model"]),
            ("full", ["treekit.model:predict:"], []),
            (None, ["predict - Prediction requested"], ["treekit.model"]),
        ],
        ids=["short-format", "full-format", "default-is-short"],
    )
    def test_enable_logging_format_renders_expected_tokens(
        self,
        monkeypatch: pytest.MonkeyPatch,
        log_format: str | None,
        expected_present: list[str],
        expected_absent: list[str],
    ) -> None:
        """Verify log_format controls which source-location tokens appear in stderr.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest fixture for patching sys.stderr safely.
            log_format (str | None): The log_format to pass, or None to use the default.
            expected_present (list[str]): Substrings that must appear in stderr output.
            expected_absent (list[str]): Substrings that must not appear in stderr output.
        """
        # Arrange
        captured_stderr = io.StringIO()
        monkeypatch.setattr(sys, "stderr", captured_stderr)
        handle = enable_logging() if log_format is None else enable_logging(log_format=log_format)  # type: ignore[arg-type]

        # Act
        _make_model().predict({"temperature": 30.0})
        handle.disable()
        stderr_output = captured_stderr.getvalue()

        # Assert
        for token in expected_present:
            with check:
                assert token in stderr_output, f"Format '{log_format}' should include '{token}' in stderr"
        for token in expected_absent:
            with check:
                assert token not in stderr_output, f"Format '{log_format}' should NOT include '{token}' in stderr"
        if log_format == "full":
            with check:
                assert re.search(r"treekit\.model:predict:\d+", stderr_output), (
                    "Full format should include a 'module:function:line' pattern"
                )
