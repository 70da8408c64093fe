class AttendanceError(Exception):
    """Base exception for the attendance system."""


class CameraError(AttendanceError):
    """Raised when webcam access fails. Fatal to the capture session."""


class FaceEngineError(AttendanceError):
    """Raised when model loading, face detection or embedding generation fails."""


class DatabaseError(AttendanceError):
    """Raised when database operations fail."""


class DescriptorMismatchError(AttendanceError):
    """Raised when descriptors of different lengths are compared."""
