"""Tests for the time_logger module."""

import time

import pytest

from cujac.time_logger import TimeLogger, TimingEvent


class TestTimingEvent:
    """Test TimingEvent record."""

    def test_timing_event_creation(self):
        """Test that TimingEvent can be created with required fields."""
        event = TimingEvent(
            name="test_event",
            event_type="start",
            timestamp=123.456,
        )
        assert event.name == "test_event"
        assert event.event_type == "start"
        assert event.timestamp == 123.456
        assert event.metadata == {}

    def test_timing_event_with_metadata(self):
        """Test TimingEvent with optional metadata."""
        event = TimingEvent(
            name="test_event",
            event_type="progress",
            timestamp=123.456,
            metadata={"message": "Test message"},
        )
        assert event.metadata == {"message": "Test message"}

    def test_event_keywords_become_metadata(self):
        logger = TimeLogger()
        logger.stop_event("scenario (jacobian)", nnz=3)
        logger.progress("scenario (jacobian)", "done", units=2)
        assert logger.events[0].metadata == {"nnz": 3}
        assert logger.events[1].metadata == {"message": "done", "units": 2}

    def test_invalid_event_type(self):
        with pytest.raises(ValueError):
            TimingEvent(name="e", event_type="pause", timestamp=1.0)


class TestTimeLogger:
    """Test TimeLogger class."""

    @pytest.mark.parametrize("verbosity", ["default", "verbose", "debug"])
    def test_initialization(self, verbosity):
        logger = TimeLogger(verbosity=verbosity)
        assert logger.verbosity == verbosity
        assert logger.events == []

    def test_initialization_default(self):
        assert TimeLogger().verbosity == "default"

    def test_initialization_string_none(self):
        """Test TimeLogger initialization with string 'None'."""
        logger = TimeLogger(verbosity='None')
        assert logger.verbosity is None

    def test_initialization_invalid_verbosity(self):
        """Test that invalid verbosity raises ValueError."""
        with pytest.raises(ValueError, match="verbosity must be"):
            TimeLogger(verbosity="invalid")

    def test_none_verbosity_no_op(self):
        """Test that None verbosity records nothing."""
        logger = TimeLogger(verbosity=None)
        logger.start_event("test")
        logger.stop_event("test")
        logger.progress("test", "message")
        assert len(logger.events) == 0

    def test_set_verbosity(self):
        """Test changing verbosity level."""
        logger = TimeLogger(verbosity='default')
        logger.set_verbosity('verbose')
        assert logger.verbosity == 'verbose'
        logger.set_verbosity(None)
        assert logger.verbosity is None
        with pytest.raises(ValueError):
            logger.set_verbosity('loud')

    def test_start_event(self):
        """Test recording a start event."""
        logger = TimeLogger()
        logger.start_event("scenario (forward zero)", units=1)

        assert len(logger.events) == 1
        assert logger.events[0].name == "scenario (forward zero)"
        assert logger.events[0].event_type == "start"
        assert logger.events[0].timestamp > 0
        assert logger.events[0].metadata == {"units": 1}

    def test_stop_event(self):
        """Test recording a stop event."""
        logger = TimeLogger()
        logger.start_event("test_operation")
        time.sleep(0.01)
        logger.stop_event("test_operation")

        assert len(logger.events) == 2
        assert logger.events[1].event_type == "stop"
        assert logger.events[1].timestamp > logger.events[0].timestamp

    def test_progress_event(self):
        """Test recording a progress message with metadata."""
        logger = TimeLogger()
        logger.progress("CUDA compilation", "nvcc -o lib.so",
                        command=["nvcc", "-o", "lib.so"])

        event = logger.events[0]
        assert event.event_type == "progress"
        assert event.metadata["message"] == "nvcc -o lib.so"
        assert event.metadata["command"] == ["nvcc", "-o", "lib.so"]

    def test_get_event_duration(self):
        """Test calculating duration between start and stop events."""
        logger = TimeLogger()
        logger.start_event("test_operation")
        time.sleep(0.02)
        logger.stop_event("test_operation")

        duration = logger.get_event_duration("test_operation")
        assert duration is not None
        assert duration >= 0.02

    def test_get_event_duration_no_stop(self):
        logger = TimeLogger()
        logger.start_event("test_operation")
        assert logger.get_event_duration("test_operation") is None

    def test_get_event_duration_unknown(self):
        assert TimeLogger().get_event_duration("test_operation") is None

    def test_stop_without_start_is_recorded(self):
        logger = TimeLogger()
        logger.stop_event("orphan")
        assert logger.events[0].event_type == "stop"
        assert logger.get_event_duration("orphan") is None

    def test_timed_context(self):
        logger = TimeLogger()
        with logger.timed("block"):
            time.sleep(0.01)
        assert [e.event_type for e in logger.events] == ["start", "stop"]
        assert logger.get_event_duration("block") >= 0.01

    def test_timed_context_records_stop_on_error(self):
        logger = TimeLogger()
        with pytest.raises(RuntimeError):
            with logger.timed("failing"):
                raise RuntimeError("boom")
        assert logger.events[-1].event_type == "stop"
        assert logger.get_event_duration("failing") is not None

    def test_multiple_operations(self):
        """Test tracking interleaved operations."""
        logger = TimeLogger()
        logger.start_event("operation1")
        logger.start_event("operation2")
        logger.stop_event("operation1")
        logger.stop_event("operation2")

        assert len(logger.events) == 4
        assert logger.get_event_duration("operation1") is not None
        assert logger.get_event_duration("operation2") is not None

    def test_print_summary_default_verbosity(self, capsys):
        """Test summary output at default verbosity."""
        logger = TimeLogger(verbosity="default")
        logger.start_event("codegen")
        time.sleep(0.01)
        logger.stop_event("codegen")

        logger.print_summary()
        captured = capsys.readouterr()
        assert "Timing Summary" in captured.out
        assert "codegen" in captured.out

    def test_print_summary_verbose(self, capsys):
        """Verbose mode prints durations and messages as they happen."""
        logger = TimeLogger(verbosity="verbose")
        logger.start_event("codegen.component1")
        logger.progress("codegen.component1", "Saving source files")
        logger.stop_event("codegen.component1")

        logger.print_summary()
        captured = capsys.readouterr()
        assert "codegen.component1" in captured.out
        assert "Saving source files" in captured.out
        assert "Timing Summary" not in captured.out

    def test_print_summary_debug(self, capsys):
        """Test output at debug level."""
        logger = TimeLogger(verbosity="debug")
        logger.start_event("test")
        logger.progress("test", "halfway")
        logger.stop_event("test")

        logger.print_summary()
        captured = capsys.readouterr()
        assert "DEBUG" in captured.out
        assert "progress" in captured.out.lower()

    def test_get_aggregate_durations(self):
        """Test aggregating event durations."""
        logger = TimeLogger()
        for _ in range(2):
            logger.start_event("operation1")
            time.sleep(0.01)
            logger.stop_event("operation1")

        durations = logger.get_aggregate_durations()
        assert durations["operation1"] >= 0.02

    def test_empty_event_name_raises(self):
        """Test that empty event names raise ValueError."""
        logger = TimeLogger()
        with pytest.raises(ValueError, match="cannot be empty"):
            logger.start_event("")
        with pytest.raises(ValueError, match="cannot be empty"):
            logger.stop_event("")
        with pytest.raises(ValueError, match="cannot be empty"):
            logger.progress("", "message")

    def test_clear(self):
        logger = TimeLogger()
        logger.start_event("a")
        logger.clear()
        assert logger.events == []
        assert logger.get_aggregate_durations() == {}
