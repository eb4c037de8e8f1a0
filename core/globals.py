from core.job_manager import JobManager
from core.source_fetcher import SourceCredentials, SourceFetcher
from core.storage import ArtifactUploader, S3StorageSink
from typing import Optional

job_manager: Optional[JobManager] = None
storage_sink: Optional[S3StorageSink] = None

def init_globals():
    global job_manager, storage_sink
    storage_sink = S3StorageSink()
    job_manager = JobManager(
        fetcher=SourceFetcher(SourceCredentials.from_env()),
        uploader=ArtifactUploader(storage_sink),
    )
