from jobworker.engine.executor import execute_job, load_job_config

__all__ = ["execute_job", "load_job_config"]
