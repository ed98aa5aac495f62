from .job_models import Job, JobStatus, JobTipo


__all__ = [
    "Job",
    "JobStatus",
    "JobTipo",
]
