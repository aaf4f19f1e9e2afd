from shodan.api.job import (
    Job,
    JobSpec,
    JobState,
    JobStatus,
    JobType,
    can_transition,
    job_name,
    timestamp_from_job_name,
)

__all__ = [
    "Job",
    "JobSpec",
    "JobState",
    "JobStatus",
    "JobType",
    "can_transition",
    "job_name",
    "timestamp_from_job_name",
]
