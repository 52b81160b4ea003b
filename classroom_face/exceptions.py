from enum import Enum


class CameraErrorKind(str, Enum):
    UNSUPPORTED_PLATFORM = "unsupported-platform"
    PERMISSION_DENIED = "permission-denied"
    DEVICE_NOT_FOUND = "device-not-found"
    DEVICE_BUSY = "device-busy"
    CONSTRAINT_UNSATISFIABLE = "constraint-unsatisfiable"
    POLICY_BLOCKED = "policy-blocked"
    ACQUISITION_TIMEOUT = "acquisition-timeout"
    CANCELLED = "cancelled"
    OTHER = "other"


class AttendanceError(Exception):
    """Base exception for the attendance system."""


class CameraError(AttendanceError):
    """Raised when webcam access fails."""

    kind = CameraErrorKind.OTHER


class UnsupportedPlatform(CameraError):
    kind = CameraErrorKind.UNSUPPORTED_PLATFORM


class PermissionDenied(CameraError):
    kind = CameraErrorKind.PERMISSION_DENIED


class DeviceNotFound(CameraError):
    kind = CameraErrorKind.DEVICE_NOT_FOUND


class DeviceBusy(CameraError):
    kind = CameraErrorKind.DEVICE_BUSY


class ConstraintUnsatisfiable(CameraError):
    kind = CameraErrorKind.CONSTRAINT_UNSATISFIABLE


class PolicyBlocked(CameraError):
    kind = CameraErrorKind.POLICY_BLOCKED


class AcquisitionTimeout(CameraError):
    kind = CameraErrorKind.ACQUISITION_TIMEOUT


class AcquisitionCancelled(CameraError):
    """Raised when a session is closed while the camera is still starting."""

    kind = CameraErrorKind.CANCELLED


class FaceEngineError(AttendanceError):
    """Raised when face detection or embedding generation fails."""


class ModelUnavailable(FaceEngineError):
    """Raised when no model source could load the face models."""


class NoFaceDetected(FaceEngineError):
    """Raised when an explicit capture finds no face in the frame."""


class EncodingFailure(AttendanceError):
    """Raised when a frame cannot be encoded to an image buffer."""


class DescriptorLengthMismatch(AttendanceError, ValueError):
    """Raised when two descriptors of different length are compared."""


class DatabaseError(AttendanceError):
    """Raised when database operations fail."""
