"""Exceptions raised by the face verification core."""


class FaceVerificationError(Exception):
    """Base exception for face verification errors."""

    pass


class NoFaceDetected(FaceVerificationError):
    """No face was found in a frame."""

    pass


class EnrollmentAborted(NoFaceDetected):
    """An enrollment capture found no face, so the whole enrollment was dropped."""

    def __init__(self, capture_index: int, capture_count: int):
        self.capture_index = int(capture_index)
        self.capture_count = int(capture_count)
        super().__init__(f"Face not detected in capture {self.capture_index}/{self.capture_count}")


class LengthMismatch(FaceVerificationError):
    """Descriptors have different lengths and cannot be combined."""

    pass


class EmptyBatch(FaceVerificationError):
    """Aggregation was requested over zero descriptors."""

    pass


class NoEnrollmentOnFile(FaceVerificationError):
    """No stored descriptor exists for the user."""

    pass
