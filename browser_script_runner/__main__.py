from .job_runner import cli

cli()
