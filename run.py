import argparse
import sys
import time
from datetime import date
from pathlib import Path

import uvicorn

from classroom_face.attendance_service import AttendanceService
from classroom_face.camera import CameraHandle, VideoStreamManager
from classroom_face.config import ACQUISITION_TIMEOUT_SECONDS, DB_PATH, FACES_DIR
from classroom_face.database import RosterStore
from classroom_face.diagnostics import run_camera_checks
from classroom_face.enrollment import BatchEnrollment, EnrollmentCapture
from classroom_face.exceptions import AttendanceError, EncodingFailure, NoFaceDetected
from classroom_face.face_engine import FaceEngine
from classroom_face.face_types import CaptureEvent, Facing, MatchEvent, RosterEntry
from classroom_face.logger import setup_logger
from classroom_face.scan_session import ScanSession, ScanSettings
from classroom_face.session import SessionListener


class ConsoleListener(SessionListener):
    def streaming_started(self, handle: CameraHandle) -> None:
        print(f"Camera {handle.camera_index} started ({handle.backend}).")

    def streaming_failed(self, reason: str) -> None:
        print(f"Camera error: {reason}")

    def scanning_paused(self) -> None:
        print("Scanning paused.")

    def scanning_resumed(self) -> None:
        print("Scanning resumed.")

    def match(self, event):
        if event is not None:
            print(f"Recognized: {event.name} ({round(event.confidence * 100)}% match)")

    def attendance_marked(self, event: MatchEvent) -> None:
        print(f"{event.name} marked as present")

    def haptic_pulse(self, pattern) -> None:
        print("\a", end="", flush=True)

    def face_presence(self, detected: bool) -> None:
        print("Face detected" if detected else "Position your face in the frame")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Offline face enrollment and attendance for a classroom"
    )
    parser.add_argument("--class-name", default="default", help="Class the roster belongs to")

    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add-student", help="Add or update a student in the roster")
    add.add_argument("--id", required=True, dest="student_id", help="Student ID")
    add.add_argument("--name", required=True, help="Student name")
    add.add_argument("--roll", default="", help="Roll number")

    list_cmd = subparsers.add_parser("list-students", help="List students and their enrollment status")
    list_cmd.add_argument("--limit", type=int, default=100, help="Max rows to print")
    list_cmd.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Show attendance for this day (YYYY-MM-DD, default today)",
    )

    test = subparsers.add_parser("camera-test", help="Check camera support, permission, devices, stream and models")
    test.add_argument("--camera", type=int, default=None, help="Camera index override")

    enroll = subparsers.add_parser("enroll", help="Capture and store one student's face")
    enroll.add_argument("--id", required=True, dest="student_id", help="Student ID")
    enroll.add_argument("--camera", type=int, default=None, help="Camera index override")
    enroll.add_argument("--facing", choices=[f.value for f in Facing], default=Facing.USER.value)
    enroll.add_argument("--image", type=Path, default=None, help="Enroll from a photo instead of the camera")

    batch = subparsers.add_parser("batch-enroll", help="Enroll every student without a face, one after another")
    batch.add_argument("--camera", type=int, default=None, help="Camera index override")
    batch.add_argument("--facing", choices=[f.value for f in Facing], default=Facing.USER.value)

    scan = subparsers.add_parser("scan", help="Scan faces and mark attendance automatically")
    scan.add_argument("--camera", type=int, default=None, help="Camera index override")
    scan.add_argument("--facing", choices=[f.value for f in Facing], default=Facing.USER.value)
    scan.add_argument("--confidence", type=float, default=None, help="Minimum confidence to show a match")
    scan.add_argument("--auto-mark", type=float, default=None, help="Minimum confidence to mark present")
    scan.add_argument("--interval", type=int, default=None, help="Scan interval in milliseconds")
    scan.add_argument("--no-haptic", action="store_true", help="Disable the bell on attendance")

    web = subparsers.add_parser("web", help="Launch the web control surface")
    web.add_argument("--host", default="0.0.0.0", help="Host interface")
    web.add_argument("--port", type=int, default=8000, help="Port")
    web.add_argument("--camera", type=int, default=None, help="Camera index override")

    return parser


def _streams(camera_index) -> VideoStreamManager:
    if camera_index is None:
        return VideoStreamManager()
    return VideoStreamManager(camera_index=camera_index)


def _find_student(store: RosterStore, student_id: str) -> RosterEntry:
    for entry in store.list_students():
        if entry.subject_id == student_id:
            return entry
    raise AttendanceError(f"Student {student_id} not found. Add the student first.")


def _capture_interactively(capture: EnrollmentCapture, prompt: str) -> CaptureEvent | None:
    capture.open(wait=True, timeout=ACQUISITION_TIMEOUT_SECONDS + 5.0)
    if not capture.is_streaming:
        raise AttendanceError(capture.error or "Camera failed to start.")
    try:
        while True:
            answer = input(prompt).strip().lower()
            if answer in {"s", "skip", "q", "quit"}:
                return None
            try:
                return capture.capture()
            except (NoFaceDetected, EncodingFailure) as exc:
                print(f"Capture failed: {exc}")
    finally:
        capture.close()


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = setup_logger("main")

    try:
        if args.command == "add-student":
            store = RosterStore(DB_PATH, FACES_DIR, class_name=args.class_name)
            store.add_student(args.student_id, args.name, args.roll)
            print(f"Saved {args.student_id} ({args.name}).")
            return 0

        if args.command == "list-students":
            store = RosterStore(DB_PATH, FACES_DIR, class_name=args.class_name)
            records = store.list_students()
            if not records:
                print("No students in this class.")
                return 0

            day = args.date or date.today()
            marked = {record.student_id: record.status for record in store.attendance_for(day.isoformat())}
            print(f"{'Student ID':<16} {'Roll':<8} {'Face':<6} {'Status':<8} {'Name'}")
            print("-" * 64)
            for record in records[: args.limit]:
                face = "yes" if record.enrolled else "no"
                status = marked.get(record.subject_id, "-")
                print(f"{record.subject_id:<16} {record.roll_label:<8} {face:<6} {status:<8} {record.name}")
            enrolled = sum(1 for record in records if record.enrolled)
            print(f"\n{enrolled} of {len(records)} students enrolled, {len(marked)} marked on {day.isoformat()}.")
            return 0

        if args.command == "camera-test":
            engine = FaceEngine()
            report = run_camera_checks(_streams(args.camera), engine)
            for check in report.checks:
                print(f"[{check.status:<7}] {check.name}: {check.message or ''}")
            for device in report.devices:
                print(f"  - {device.label} {device.width}x{device.height}")
            print("All checks passed." if report.passed else "Camera test failed.")
            return 0 if report.passed else 1

        if args.command == "enroll":
            store = RosterStore(DB_PATH, FACES_DIR, class_name=args.class_name)
            student = _find_student(store, args.student_id)
            engine = FaceEngine()

            if args.image is not None:
                descriptor = engine.extract_from_image(args.image)
                if descriptor is None:
                    raise NoFaceDetected(f"No face detected in {args.image}.")
                store.save_face(student.subject_id, descriptor, args.image.read_bytes())
                print(f"{student.name}'s face enrolled from {args.image}.")
                return 0

            capture = EnrollmentCapture(
                streams=_streams(args.camera),
                engine=engine,
                subject_name=student.name,
                facing=Facing(args.facing),
                listener=ConsoleListener(),
            )
            event = _capture_interactively(capture, f"Press Enter to capture {student.name}'s face (q to quit): ")
            if event is None:
                print("Enrollment cancelled.")
                return 1
            store.save_face(student.subject_id, event.descriptor, event.image)
            print(f"{student.name}'s face enrolled successfully.")
            return 0

        if args.command == "batch-enroll":
            store = RosterStore(DB_PATH, FACES_DIR, class_name=args.class_name)
            engine = FaceEngine()
            streams = _streams(args.camera)
            summary = {}

            def _factory(entry: RosterEntry, on_capture) -> EnrollmentCapture:
                return EnrollmentCapture(
                    streams=streams,
                    engine=engine,
                    on_capture=on_capture,
                    subject_name=entry.name,
                    facing=Facing(args.facing),
                    listener=ConsoleListener(),
                )

            batch = BatchEnrollment(
                roster=store.list_students(),
                save_face=store.save_face,
                on_complete=lambda enrolled: summary.update(enrolled=enrolled),
                capture_factory=_factory,
            )
            if not batch.pending:
                print("All students are already enrolled.")
                return 0

            while batch.current is not None:
                entry = batch.current
                position = batch.index + 1
                print(f"\nStudent {position} of {len(batch.pending)}: {entry.name} ({entry.roll_label or entry.subject_id})")
                event = _capture_interactively(batch.begin_current(), "Press Enter to capture, s to skip: ")
                if event is None:
                    batch.skip()
                elif batch.current is entry:
                    print("Saving failed; try again.")

            print(f"\nEnrolled {len(summary.get('enrolled', ()))} of {len(batch.pending)} students.")
            return 0

        if args.command == "scan":
            store = RosterStore(DB_PATH, FACES_DIR, class_name=args.class_name)
            attendance = AttendanceService(store)
            defaults = ScanSettings()
            settings = ScanSettings(
                confidence_threshold=defaults.confidence_threshold if args.confidence is None else args.confidence,
                auto_mark_threshold=defaults.auto_mark_threshold if args.auto_mark is None else args.auto_mark,
                haptic_feedback=not args.no_haptic,
                scan_interval_ms=defaults.scan_interval_ms if args.interval is None else args.interval,
            ).clamped()
            session = ScanSession(
                streams=_streams(args.camera),
                engine=FaceEngine(),
                roster=store.list_students,
                mark_attendance=attendance.mark,
                marked_ids=attendance.marked_ids,
                settings=settings,
                facing=Facing(args.facing),
                listener=ConsoleListener(),
            )
            session.open(wait=True, timeout=ACQUISITION_TIMEOUT_SECONDS + 5.0)
            if not session.is_streaming:
                raise AttendanceError(session.error or "Camera failed to start.")
            print("Scanning. Press Ctrl+C to stop.")
            try:
                while session.is_streaming:
                    time.sleep(0.5)
            finally:
                session.close()
            snapshot = session.snapshot()
            print(f"Scan stopped. {snapshot.marked_count} of {snapshot.roster_count} students present.")
            return 0

        if args.command == "web":
            from classroom_face.web_app import create_web_app

            store = RosterStore(DB_PATH, FACES_DIR, class_name=args.class_name)
            app = create_web_app(store=store, camera_index=args.camera)
            uvicorn.run(app, host=args.host, port=args.port, log_level="info")
            return 0

    except AttendanceError as exc:
        logger.error("Application error: %s", exc)
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
