class PipelineError(Exception):
    """Base class for every classified failure of an extraction job."""


class FetchError(PipelineError):
    """Metadata lookup or byte-stream acquisition from the source failed."""


class WorkerError(PipelineError):
    """ffmpeg failed and left no usable artifact behind."""


class JobTimeoutError(PipelineError, TimeoutError):
    """Deadline or stall fired and no usable artifact exists."""


class UploadError(PipelineError):
    """Transfer of the artifact to the storage sink failed."""


class CleanupError(PipelineError):
    """Artifact deletion failed. Logged only, never a job failure."""
