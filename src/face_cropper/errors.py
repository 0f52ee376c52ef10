"""Exception types raised by the face-cropping pipeline."""


class FaceCropperError(Exception):
    """Base class for pipeline errors that can be attributed to one image."""

    kind = "error"

    def __init__(
        self,
        message: str,
        image_id: str | None = None,
        filename: str | None = None,
    ) -> None:
        super().__init__(message)
        self.image_id = image_id
        self.filename = filename


class DecodeError(FaceCropperError):
    """Input file is corrupt, not an image, or outside the accepted size range."""

    kind = "decode"


class DetectionError(FaceCropperError):
    """No detector is available, or every detection attempt failed."""

    kind = "detection"


class DetectionAttemptError(DetectionError):
    """A single detection attempt failed; retried while budget remains."""


class WorkerTimeoutError(DetectionAttemptError):
    """The background worker did not answer before the request timed out."""


class EncodingError(FaceCropperError):
    """Rasterizing or encoding the crop of one face failed."""

    kind = "encoding"


class EmptyHistory(FaceCropperError):
    """Undo or redo was requested with nothing to restore."""

    kind = "history"
