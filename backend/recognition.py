"""
Live face-scan attendance.

A session turns a stream of frames into at most one FaceScan mark-event per
student per activation. It never writes to the ledger: callers collect the
events (alongside manual marks) and save them in one batch.

    Idle --activate--> Active --deactivate / camera failure--> Idle

State lives in an immutable RecognitionSessionState that every cycle replaces.
"""
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import date as Date
from typing import Callable, Iterable, Literal, Mapping, Sequence

from backend import config
from backend.camera import BoundingBox, EmbeddingProvider, FaceDetection, FrameSource, camera_for_facing_mode
from backend.errors import InputError, ResourceError
from backend.models import MarkEvent, Student, parse_date
from backend.recognizer import UNKNOWN_LABEL, FaceGallery, match
from backend.school_calendar import holiday_dates, today
from database.db import get_attendance, get_class, get_holidays, get_students_by_class

logger = logging.getLogger(__name__)

SessionPhase = Literal["idle", "active"]

STATUS_READY = "Ready to start attendance."
STATUS_NO_FACES = "No student faces registered for recognition."
STATUS_DETECTING = "Detecting faces..."
STATUS_CAMERA_OFF = "Camera off."
STATUS_CAMERA_DENIED = "Camera access denied. Please check permissions."
STATUS_MODEL_ERROR = "Error loading recognition models."
STATUS_SWITCHED = "Camera switched. Detecting faces..."
STATUS_SWITCH_FAILED = "Failed to switch camera."


@dataclass(frozen=True)
class RecognitionSessionState:
    phase: SessionPhase = "idle"
    class_id: str | None = None
    day: Date | None = None
    gallery: FaceGallery | None = None
    names: Mapping[str, str] = field(default_factory=dict)
    recognized: frozenset[str] = frozenset()
    status_message: str = STATUS_READY
    facing_mode: str = "user"
    cycles: int = 0

    @property
    def is_active(self) -> bool:
        return self.phase == "active"

    @property
    def is_inert(self) -> bool:
        """Active but nothing to recognize against."""
        return self.is_active and (self.gallery is None or self.gallery.is_empty)


@dataclass(frozen=True)
class FaceObservation:
    label: str
    name: str | None
    distance: float
    box: BoundingBox | None
    already_marked: bool

    @property
    def is_known(self) -> bool:
        return self.label != UNKNOWN_LABEL


@dataclass(frozen=True)
class CycleResult:
    state: RecognitionSessionState
    events: tuple[MarkEvent, ...] = ()
    observations: tuple[FaceObservation, ...] = ()


def start_state(
    *,
    class_id: str,
    day: Date,
    students: Sequence[Student],
    already_present: Iterable[str] = (),
    facing_mode: str = "user",
) -> RecognitionSessionState:
    gallery = FaceGallery.from_students(students)
    return RecognitionSessionState(
        phase="active",
        class_id=class_id,
        day=day,
        gallery=gallery,
        names={s.id: s.name for s in students},
        recognized=frozenset(already_present),
        status_message=STATUS_NO_FACES if gallery.is_empty else STATUS_DETECTING,
        facing_mode=facing_mode,
    )


def recognition_cycle(
    state: RecognitionSessionState,
    detections: Sequence[FaceDetection],
    threshold: float | None = None,
) -> CycleResult:
    """
    Match one frame's detections. Known faces not yet in `recognized` emit a
    Present/FaceScan event and join the set; repeats are only observed.
    """
    if not state.is_active or state.is_inert:
        return CycleResult(state)

    recognized = set(state.recognized)
    status = state.status_message
    events: list[MarkEvent] = []
    observations: list[FaceObservation] = []

    for detection in detections:
        result = match(detection.embedding, state.gallery, threshold)
        if result.is_unknown:
            observations.append(FaceObservation(UNKNOWN_LABEL, None, result.distance, detection.box, False))
            continue

        name = state.names.get(result.label, result.label)
        already = result.label in recognized
        observations.append(FaceObservation(result.label, name, result.distance, detection.box, already))
        if already:
            continue

        events.append(
            MarkEvent(
                student_id=result.label,
                status="Present",
                method="FaceScan",
                confidence=result.confidence,
            )
        )
        recognized.add(result.label)
        status = f"Recognized: {name}"

    next_state = replace(
        state,
        recognized=frozenset(recognized),
        status_message=status,
        cycles=state.cycles + 1,
    )
    return CycleResult(next_state, tuple(events), tuple(observations))


class RecognitionSession:
    """
    Drives recognition_cycle against a live frame source.

    The frame source is opened on activate and released on deactivate,
    on camera failure, on a facing switch, and on context exit.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        frame_source_factory: Callable[[str], FrameSource] = camera_for_facing_mode,
        threshold: float | None = None,
        poll_interval_ms: int | None = None,
    ):
        self.provider = provider
        self.threshold = threshold
        self.poll_interval_ms = config.POLL_INTERVAL_MS if poll_interval_ms is None else poll_interval_ms
        self._frame_source_factory = frame_source_factory
        self._source: FrameSource | None = None
        self._provider_ready = False
        self._cycle_lock = threading.Lock()
        self._stop = threading.Event()
        self._state = RecognitionSessionState(facing_mode=config.DEFAULT_FACING_MODE)

    @property
    def state(self) -> RecognitionSessionState:
        return self._state

    @property
    def status_message(self) -> str:
        return self._state.status_message

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def activate(
        self,
        class_id: str,
        day: Date | str | None = None,
        *,
        already_present: Iterable[str] = (),
    ) -> RecognitionSessionState:
        """
        Start recognising for one class on one day. Re-activating for the
        same class and day is a no-op; a different class or day must be
        deactivated first.
        """
        target_day = parse_date(day) if day is not None else today()
        current = self._state
        if current.is_active:
            if current.class_id == class_id and current.day == target_day:
                return current
            raise InputError(
                f"Session already active for class {current.class_id} on {current.day}; deactivate it first."
            )

        section = get_class(class_id)
        if section is None:
            raise InputError(f"Unknown class: {class_id}")
        if target_day in holiday_dates(get_holidays(section.school_id, target_day, target_day)):
            raise InputError(f"{target_day} is a holiday; attendance is not taken.")

        self._load_provider()

        students = get_students_by_class(class_id)
        present_today = {
            r.student_id
            for r in get_attendance(class_id=class_id, date=target_day)
            if r.status == "Present"
        }
        present_today.update(already_present)

        # gallery errors surface here, before the camera is acquired
        next_state = start_state(
            class_id=class_id,
            day=target_day,
            students=students,
            already_present=present_today,
            facing_mode=current.facing_mode,
        )
        with self._cycle_lock:
            self._open_source(next_state.facing_mode)
            self._stop.clear()
            self._state = next_state

        if self._state.is_inert:
            logger.warning("Class %s has no registered faces; session is inert", class_id)
        logger.info(
            "Recognition session active for class %s on %s (%d faces, %d already present)",
            class_id,
            target_day,
            len(self._state.gallery),
            len(present_today),
        )
        return self._state

    def deactivate(self) -> RecognitionSessionState:
        self._stop.set()
        with self._cycle_lock:
            was_active = self._state.is_active
            self._release_source()
            self._state = RecognitionSessionState(
                facing_mode=self._state.facing_mode,
                status_message=STATUS_CAMERA_OFF if was_active else self._state.status_message,
            )
        if was_active:
            logger.info("Recognition session stopped")
        return self._state

    def switch_camera(self) -> RecognitionSessionState:
        with self._cycle_lock:
            state = self._state
            new_mode = "environment" if state.facing_mode == "user" else "user"
            if not state.is_active:
                self._state = replace(state, facing_mode=new_mode)
                return self._state

            self._release_source()
            try:
                self._open_source(new_mode)
            except ResourceError:
                self._go_idle(STATUS_SWITCH_FAILED, facing_mode=new_mode)
                raise
            self._state = replace(state, facing_mode=new_mode, status_message=STATUS_SWITCHED)
            logger.info("Switched camera to %s", new_mode)
            return self._state

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.deactivate()
        return False

    # -----------------------------
    # Cycles
    # -----------------------------
    def run_cycle(self) -> CycleResult:
        """One detection cycle. Skipped (no events) while another is in flight."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Previous cycle still running; skipped")
            return CycleResult(self._state)
        try:
            state = self._state
            if not state.is_active or state.is_inert:
                return CycleResult(state)

            try:
                frame = self._source.read()
            except ResourceError as exc:
                logger.error("Frame source failed: %s", exc)
                self._go_idle(str(exc))
                raise

            detections = self.provider.detect(frame)
            result = recognition_cycle(state, detections, self.threshold)
            self._state = result.state
            if detections:
                logger.debug("Cycle %d: %d face(s), %d new", result.state.cycles, len(detections), len(result.events))
            for event in result.events:
                logger.info("Recognized student %s (confidence %s)", event.student_id, event.confidence)
            return result
        finally:
            self._cycle_lock.release()

    def run(
        self,
        on_result: Callable[[CycleResult], None],
        *,
        max_cycles: int | None = None,
    ) -> int:
        """
        Poll every `poll_interval_ms` until deactivated, `max_cycles` is hit,
        or the camera fails (ResourceError propagates). Returns cycles run.
        """
        if self._state.is_inert:
            return 0

        interval = self.poll_interval_ms / 1000.0
        count = 0
        while self._state.is_active and not self._stop.is_set():
            started = time.monotonic()
            on_result(self.run_cycle())
            count += 1
            if max_cycles is not None and count >= max_cycles:
                break
            remaining = interval - (time.monotonic() - started)
            if remaining > 0:
                self._stop.wait(remaining)
        return count

    # -----------------------------
    # Internals
    # -----------------------------
    def _load_provider(self) -> None:
        if self._provider_ready:
            return
        try:
            self.provider.load()
        except Exception as exc:
            self._state = replace(self._state, phase="idle", status_message=STATUS_MODEL_ERROR)
            logger.error("Embedding provider failed to load: %s", exc)
            raise ResourceError("Failed to load the face recognition model.") from exc
        self._provider_ready = True

    def _open_source(self, facing_mode: str) -> None:
        self._release_source()
        source = self._frame_source_factory(facing_mode)
        try:
            source.open()
        except ResourceError:
            self._go_idle(STATUS_CAMERA_DENIED, facing_mode=facing_mode)
            raise
        self._source = source

    def _release_source(self) -> None:
        source, self._source = self._source, None
        if source is not None:
            source.close()

    def _go_idle(self, message: str, *, facing_mode: str | None = None) -> None:
        self._stop.set()
        self._release_source()
        self._state = RecognitionSessionState(
            facing_mode=facing_mode or self._state.facing_mode,
            status_message=message,
        )
