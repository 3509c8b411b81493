from .config import expand, load_workflow, loads_workflow
from .model import Event, JobSpec, PipelineConfig, PipelineResult, StepSpec, TriggerRule
from .runner import aggregate, run_job, run_pipeline
from .trigger import matches

__all__ = [
    "expand",
    "load_workflow",
    "loads_workflow",
    "Event",
    "JobSpec",
    "PipelineConfig",
    "PipelineResult",
    "StepSpec",
    "TriggerRule",
    "aggregate",
    "run_job",
    "run_pipeline",
    "matches",
]
