from redis import Redis
from rq import Queue
from backend.core.config import get_settings

settings = get_settings()

PROCESS_LAB_UPLOAD = 'workers.biomarker_pipeline.main.process_lab_upload'

redis_conn = Redis.from_url(settings.redis.url)
queue = Queue('lab_uploads', connection=redis_conn)


def get_queue():
    return queue


def enqueue_lab_upload(queue: Queue, upload_id: str):
    """Queue one pipeline run; the job id is the upload id so a rerun never shares a job."""
    return queue.enqueue(
        PROCESS_LAB_UPLOAD,
        upload_id,
        job_id=upload_id,
        job_timeout=settings.processing.job_timeout
    )
