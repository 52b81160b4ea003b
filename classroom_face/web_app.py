import threading
import time
from dataclasses import asdict
from datetime import date
from typing import Iterator, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .attendance_service import AttendanceService
from .camera import VideoStreamManager
from .config import CAMERA_INDEX, DB_PATH, FACES_DIR
from .database import RosterStore
from .diagnostics import run_camera_checks
from .exceptions import AttendanceError, EncodingFailure
from .face_engine import FaceEngine
from .face_types import Facing
from .frame_capture import capture_still
from .logger import setup_logger
from .scan_session import ScanSession


logger = setup_logger("web_app")


class AddStudentBody(BaseModel):
    student_id: str
    name: str
    roll_number: str = ""


class FacingBody(BaseModel):
    facing: Optional[Facing] = None


class SettingsBody(BaseModel):
    confidence_threshold: Optional[float] = None
    auto_mark_threshold: Optional[float] = None
    haptic_feedback: Optional[bool] = None
    scan_interval_ms: Optional[int] = None


def _mjpeg_frame_generator(session: ScanSession) -> Iterator[bytes]:
    while session.is_streaming:
        frame = session.sink.read_frame()
        if frame is None:
            time.sleep(0.03)
            continue
        try:
            jpeg = capture_still(frame)
        except EncodingFailure:
            continue
        yield (
            b"--frame\r\n"
            b"Content-Type: image/jpeg\r\n\r\n" + jpeg + b"\r\n"
        )


def create_web_app(
    store: Optional[RosterStore] = None,
    streams: Optional[VideoStreamManager] = None,
    engine: Optional[FaceEngine] = None,
    camera_index: Optional[int] = None,
) -> FastAPI:
    app = FastAPI(title="Classroom Face Attendance", version="1.0.0")

    store = store or RosterStore(DB_PATH, FACES_DIR)
    streams = streams or VideoStreamManager(camera_index=CAMERA_INDEX if camera_index is None else int(camera_index))
    engine = engine or FaceEngine()
    attendance = AttendanceService(store)
    session = ScanSession(
        streams=streams,
        engine=engine,
        roster=store.list_students,
        mark_attendance=attendance.mark,
        marked_ids=attendance.marked_ids,
    )
    session_guard = threading.Lock()
    app.state.session = session
    app.state.store = store

    @app.on_event("shutdown")
    def _shutdown() -> None:
        session.close()
        engine.close()

    @app.get("/api/state")
    def state():
        snapshot = session.snapshot()
        payload = asdict(snapshot)
        payload["settings"] = session.settings.as_dict()
        return JSONResponse(payload)

    @app.get("/api/camera/check")
    def camera_check():
        with session_guard:
            if session.is_streaming:
                raise HTTPException(status_code=409, detail="Close the scan session before testing the camera.")
            return run_camera_checks(streams, engine, permissions=session.permissions).as_dict()

    @app.post("/api/scan/open")
    def open_scan():
        with session_guard:
            session.open(wait=True, timeout=streams.timeout_seconds + 5.0)
        if not session.is_streaming:
            raise HTTPException(status_code=503, detail=session.error or "Camera failed to start.")
        return {"ok": True, "state": session.state.value}

    @app.post("/api/scan/close")
    def close_scan():
        with session_guard:
            session.close()
        return {"ok": True, "state": session.state.value}

    @app.post("/api/scan/pause")
    def pause_scan():
        session.pause()
        return {"ok": True, "state": session.state.value}

    @app.post("/api/scan/resume")
    def resume_scan():
        session.resume()
        return {"ok": True, "state": session.state.value}

    @app.post("/api/scan/facing")
    def switch_facing(payload: FacingBody):
        with session_guard:
            session.switch_facing(payload.facing)
        return {"ok": True, "facing": session.facing.value}

    @app.put("/api/settings")
    def update_settings(payload: SettingsBody):
        changes = {key: value for key, value in payload.model_dump().items() if value is not None}
        return session.update_settings(**changes).as_dict()

    @app.get("/api/stream/camera")
    def camera_stream():
        if not session.is_streaming:
            raise HTTPException(status_code=409, detail="Camera is not streaming.")
        return StreamingResponse(
            _mjpeg_frame_generator(session),
            media_type="multipart/x-mixed-replace; boundary=frame",
        )

    @app.get("/api/students")
    def list_students():
        marked = attendance.marked_ids()
        return [
            {
                "student_id": entry.subject_id,
                "name": entry.name,
                "roll_number": entry.roll_label,
                "enrolled": entry.enrolled,
                "marked_today": entry.subject_id in marked,
            }
            for entry in store.list_students()
        ]

    @app.get("/api/attendance")
    def attendance_for(day: Optional[date] = Query(None, alias="date")):
        day = day or date.today()
        return {
            "date": day.isoformat(),
            "records": [asdict(record) for record in store.attendance_for(day.isoformat())],
        }

    @app.post("/api/students")
    def add_student(payload: AddStudentBody):
        try:
            store.add_student(payload.student_id, payload.name, payload.roll_number)
        except AttendanceError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        logger.info("Student saved via web: %s", payload.student_id)
        return {"ok": True}

    return app
