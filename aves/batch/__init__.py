"""Batch annotation jobs.

Modules:
    worker   - AnnotationWorker (rate limit, vision call, retries) and RetryPolicy
    manager  - JobManager: start, observe and cancel batch jobs
"""
