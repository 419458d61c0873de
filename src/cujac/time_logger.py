"""Time logging infrastructure for tracking code generation and builds."""

import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import attrs

_VERBOSITY_LEVELS = {None, 'default', 'verbose', 'debug'}


@attrs.define(frozen=True)
class TimingEvent:
    """Record of a single timing event.

    Attributes
    ----------
    name : str
        Name of the timed operation.
    event_type : str
        One of 'start', 'stop' or 'progress'.
    timestamp : float
        Wall-clock time from time.perf_counter()
    metadata : dict
        Keyword arguments recorded with the event. Progress events store
        their text under 'message'.
    """
    name: str = attrs.field(validator=attrs.validators.instance_of(str))
    event_type: str = attrs.field(
        validator=attrs.validators.in_({'start', 'stop', 'progress'})
    )
    timestamp: float = attrs.field(
        validator=attrs.validators.instance_of(float)
    )
    metadata: dict = attrs.field(factory=dict)


class TimeLogger:
    """Callback-based timing system for generation and compilation jobs.

    Parameters
    ----------
    verbosity : str or None, default='default'
        Output verbosity level. Options:
        - None: record nothing, print nothing
        - 'default': Aggregate times only, printed by print_summary
        - 'verbose': Job durations and messages printed as they finish
        - 'debug': All events with start/stop/progress

    Attributes
    ----------
    verbosity : str or None
        Current verbosity level
    events : list[TimingEvent]
        Chronological list of all recorded events
    _active_starts : dict[str, float]
        Map of event names to their start timestamps (for matching)
    """

    def __init__(self, verbosity: Optional[str] = 'default') -> None:
        self.verbosity = self._check_verbosity(verbosity)
        self.events: list[TimingEvent] = []
        self._active_starts: dict[str, float] = {}

    @staticmethod
    def _check_verbosity(verbosity):
        if verbosity == 'None':
            verbosity = None
        if verbosity not in _VERBOSITY_LEVELS:
            raise ValueError(
                f"verbosity must be None, 'default', 'verbose', or 'debug', "
                f"got '{verbosity}'"
            )
        return verbosity

    def set_verbosity(self, verbosity: Optional[str]) -> None:
        """Change the verbosity level."""
        self.verbosity = self._check_verbosity(verbosity)

    def start_event(self, event_name: str, **metadata: Any) -> None:
        """Record the start of a timed operation.

        Parameters
        ----------
        event_name : str
            Unique identifier for this event
        **metadata : Any
            Optional metadata to store with event
        """
        if not event_name:
            raise ValueError("event_name cannot be empty")
        if self.verbosity is None:
            return

        timestamp = time.perf_counter()
        self.events.append(
            TimingEvent(
                name=event_name,
                event_type='start',
                timestamp=timestamp,
                metadata=metadata,
            )
        )
        self._active_starts[event_name] = timestamp

        if self.verbosity == 'debug':
            print(f"[DEBUG] Started: {event_name}")

    def stop_event(self, event_name: str, **metadata: Any) -> None:
        """Record the end of a timed operation.

        Parameters
        ----------
        event_name : str
            Identifier matching a previous start_event call
        **metadata : Any
            Optional metadata to store with event

        Notes
        -----
        If no matching start event exists, prints a warning in debug mode
        and stores the orphaned stop event for diagnostics.
        """
        if not event_name:
            raise ValueError("event_name cannot be empty")
        if self.verbosity is None:
            return

        timestamp = time.perf_counter()
        self.events.append(
            TimingEvent(
                name=event_name,
                event_type='stop',
                timestamp=timestamp,
                metadata=metadata,
            )
        )

        if event_name in self._active_starts:
            duration = timestamp - self._active_starts.pop(event_name)
            if self.verbosity == 'debug':
                print(f"[DEBUG] Stopped: {event_name} ({duration:.3f}s)")
            elif self.verbosity == 'verbose':
                print(f"{event_name}: {duration:.3f}s")
        elif self.verbosity == 'debug':
            print(f"[DEBUG] Warning: stop_event('{event_name}') "
                  "without matching start")

    def progress(
        self, event_name: str, message: str, **metadata: Any
    ) -> None:
        """Record a progress message within an operation.

        Messages are printed in 'verbose' and 'debug' modes.
        """
        if not event_name:
            raise ValueError("event_name cannot be empty")
        if self.verbosity is None:
            return

        metadata_with_msg = dict(metadata)
        metadata_with_msg['message'] = message
        self.events.append(
            TimingEvent(
                name=event_name,
                event_type='progress',
                timestamp=time.perf_counter(),
                metadata=metadata_with_msg,
            )
        )

        if self.verbosity == 'debug':
            print(f"[DEBUG] Progress: {event_name} - {message}")
        elif self.verbosity == 'verbose':
            print(message)

    @contextmanager
    def timed(self, event_name: str, **metadata: Any) -> Iterator[None]:
        """Context manager wrapping ``start_event``/``stop_event``.

        The stop event is recorded even if the body raises.
        """
        self.start_event(event_name, **metadata)
        try:
            yield
        finally:
            self.stop_event(event_name)

    def get_event_duration(self, event_name: str) -> Optional[float]:
        """Query duration of the most recent completed event.

        Returns
        -------
        float or None
            Duration in seconds, or None if no matching start/stop pair
        """
        start_time = None
        stop_time = None

        for event in reversed(self.events):
            if event.name == event_name:
                if event.event_type == 'stop' and stop_time is None:
                    stop_time = event.timestamp
                elif event.event_type == 'start' and stop_time is not None:
                    start_time = event.timestamp
                    break

        if start_time is not None and stop_time is not None:
            return stop_time - start_time
        return None

    def get_aggregate_durations(self) -> dict[str, float]:
        """Sum the durations of all completed events, keyed by name."""
        durations: dict[str, float] = {}
        event_starts: dict[str, float] = {}

        for event in self.events:
            if event.event_type == 'start':
                event_starts[event.name] = event.timestamp
            elif event.event_type == 'stop' and event.name in event_starts:
                duration = event.timestamp - event_starts.pop(event.name)
                durations[event.name] = (
                    durations.get(event.name, 0.0) + duration
                )

        return durations

    def print_summary(self) -> None:
        """Print aggregate durations.

        Only prints in 'default' mode; 'verbose' and 'debug' already printed
        inline.
        """
        if self.verbosity == 'default':
            durations = self.get_aggregate_durations()
            if durations:
                print("\nTiming Summary:")
                for name, duration in sorted(durations.items()):
                    print(f"  {name}: {duration:.3f}s")

    def clear(self) -> None:
        """Drop all recorded events."""
        self.events.clear()
        self._active_starts.clear()


default_timelogger = TimeLogger()
