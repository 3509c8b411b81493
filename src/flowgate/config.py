# config.py
# Workflow file loading: YAML -> pydantic documents -> frozen model objects.
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .expressions import check_expression, expressions_in
from .model import (
    DEFAULT_TIMEOUT_MINUTES,
    EVENT_TYPES,
    GlobalEnv,
    JobSpec,
    PipelineConfig,
    StepKind,
    StepSpec,
    TriggerRule,
)

# `uses:` action name (without the @version) -> step kind
ACTION_KINDS: Dict[str, StepKind] = {
    "actions/checkout": StepKind.CHECKOUT,
    "actions/cache": StepKind.CACHE_RESTORE,
    "actions-rs/toolchain": StepKind.TOOLCHAIN_INSTALL,
    "dtolnay/rust-toolchain": StepKind.TOOLCHAIN_INSTALL,
}

# Keys accepted and ignored because they have no effect on a local run.
# Anything else outside the modelled fields is a ConfigError.
WORKFLOW_IGNORED_KEYS = frozenset({"permissions", "concurrency", "run-name"})
JOB_IGNORED_KEYS = frozenset({"permissions", "concurrency"})
STEP_IGNORED_KEYS = frozenset({"id"})


# ----------------------------------------------------------------------
# YAML
# ----------------------------------------------------------------------

class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses duplicate mapping keys instead of keeping the last one."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _value_node in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise ConfigError(
                    f"duplicate key {key!r}",
                    line=key_node.start_mark.line + 1,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _load_yaml(text: str, source: str) -> Mapping[str, Any]:
    try:
        data = yaml.load(text, Loader=_UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {source}", error=str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError(f"{source} must contain a mapping at the top level")
    # YAML 1.1 reads a bare `on:` key as the boolean true
    if True in data and "on" not in data:
        data["on"] = data.pop(True)
    return data


# ----------------------------------------------------------------------
# Documents (shape of the file, validated by pydantic)
# ----------------------------------------------------------------------

def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _str_map(values: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    return {str(k): _stringify(v) for k, v in (values or {}).items()}


class EventFilterDocument(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    branches: List[str] = Field(default_factory=list)
    paths: List[str] = Field(default_factory=list)
    paths_ignore: List[str] = Field(default_factory=list, alias="paths-ignore")


class StepDocument(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    uses: Optional[str] = None
    run: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, Any] = Field(default_factory=dict)
    working_directory: Optional[str] = Field(default=None, alias="working-directory")


class JobDocument(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    runs_on: Union[str, List[str]] = Field(default="ubuntu-latest", alias="runs-on")
    timeout_minutes: float = Field(default=DEFAULT_TIMEOUT_MINUTES, alias="timeout-minutes")
    env: Dict[str, Any] = Field(default_factory=dict)
    steps: List[StepDocument] = Field(default_factory=list)

    @field_validator("timeout_minutes")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout-minutes must be positive")
        return v


class WorkflowDocument(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = "workflow"
    on: Union[str, List[str], Dict[str, Optional[EventFilterDocument]]]
    env: Dict[str, Any] = Field(default_factory=dict)
    jobs: Dict[str, JobDocument]


def _validation_error(e: ValidationError) -> ConfigError:
    problems = []
    for err in e.errors():
        where = ".".join(str(p) for p in err.get("loc", ()))
        problems.append(f"{where}: {err.get('msg')}")
    return ConfigError("workflow does not match the expected schema", problems="; ".join(problems))


def _reject_unknown_keys(doc: BaseModel, ignored: frozenset, *, job: str = "", step: Optional[str] = None) -> None:
    for key in doc.model_extra or {}:
        if key not in ignored:
            raise ConfigError(f"unsupported key '{key}'", job=job, step=step)


def _document(data: Union[Mapping[str, Any], WorkflowDocument]) -> WorkflowDocument:
    if isinstance(data, WorkflowDocument):
        return data
    try:
        return WorkflowDocument.model_validate(data)
    except ValidationError as e:
        raise _validation_error(e) from e


# ----------------------------------------------------------------------
# Triggers
# ----------------------------------------------------------------------

def parse_triggers(on: Union[str, Sequence[str], Mapping[str, Optional[EventFilterDocument]]]) -> Tuple[TriggerRule, ...]:
    if isinstance(on, str):
        on = [on]
    if not isinstance(on, Mapping):
        on = {name: None for name in on}

    rules: List[TriggerRule] = []
    for event_type, filters in on.items():
        if event_type not in EVENT_TYPES:
            raise ConfigError(
                f"unsupported trigger event '{event_type}'",
                supported=", ".join(EVENT_TYPES),
            )
        filters = filters or EventFilterDocument()
        unknown = list(filters.model_extra or {})
        if unknown:
            raise ConfigError(f"unsupported trigger filter '{unknown[0]}'", event=event_type)
        if filters.paths and filters.paths_ignore:
            raise ConfigError(
                f"trigger '{event_type}' cannot use both paths and paths-ignore",
            )
        rules.append(
            TriggerRule(
                event_types=frozenset({event_type}),
                branch_patterns=tuple(filters.branches),
                path_exclude_patterns=tuple(filters.paths_ignore),
                path_include_patterns=tuple(filters.paths),
            )
        )
    if not rules:
        raise ConfigError("workflow has no trigger events")
    return tuple(rules)


# ----------------------------------------------------------------------
# Job expansion
# ----------------------------------------------------------------------

def step_kind_for(uses: str) -> StepKind:
    action = uses.split("@", 1)[0].strip()
    try:
        return ACTION_KINDS[action]
    except KeyError:
        raise ConfigError(
            f"unrecognized action '{uses}'",
            known=", ".join(sorted(ACTION_KINDS)),
        ) from None


def _check_expressions(job: str, step: Optional[str], values: Mapping[str, str]) -> None:
    for value in values.values():
        for expr in expressions_in(value):
            try:
                check_expression(expr)
            except ConfigError as e:
                e.job, e.step = job, step
                raise


def _expand_step(job_name: str, index: int, doc: StepDocument) -> StepSpec:
    _reject_unknown_keys(doc, STEP_IGNORED_KEYS, job=job_name, step=doc.name or f"#{index + 1}")
    if bool(doc.uses) == bool(doc.run):
        raise ConfigError(
            "a step needs exactly one of 'uses' or 'run'",
            job=job_name,
            step=doc.name or f"#{index + 1}",
        )

    parameters = _str_map(doc.with_)
    if doc.uses:
        kind = step_kind_for(doc.uses)
        parameters["uses"] = doc.uses
        name = doc.name or f"Run {doc.uses}"
    else:
        kind = StepKind.SHELL_COMMAND
        parameters["run"] = doc.run
        if doc.working_directory:
            parameters["working-directory"] = doc.working_directory
        first_line = doc.run.strip().splitlines()[0] if doc.run.strip() else ""
        name = doc.name or f"Run {first_line}"

    env = _str_map(doc.env)
    _check_expressions(job_name, name, parameters)
    _check_expressions(job_name, name, env)
    return StepSpec(kind=kind, name=name, parameters=parameters, env=env)


def check_unique_names(jobs: Sequence[JobSpec]) -> None:
    names = [j.name for j in jobs]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigError(f"duplicate job names found: {dupes}")


def expand(config: Union[Mapping[str, Any], WorkflowDocument]) -> List[JobSpec]:
    """
    Turn the `jobs:` section into JobSpecs, in declaration order.

    Raises ConfigError for duplicate names, unknown step kinds or malformed
    steps. Pure: the same configuration always yields the same jobs.
    """
    doc = _document(config)
    if not doc.jobs:
        raise ConfigError("workflow has no jobs")

    jobs: List[JobSpec] = []
    for job_name, job_doc in doc.jobs.items():
        _reject_unknown_keys(job_doc, JOB_IGNORED_KEYS, job=job_name)
        if not job_doc.steps:
            raise ConfigError("job must have at least one step", job=job_name)

        runs_on = job_doc.runs_on if isinstance(job_doc.runs_on, str) else job_doc.runs_on[0]
        env = _str_map(job_doc.env)
        _check_expressions(job_name, None, env)

        jobs.append(
            JobSpec(
                name=job_name,
                title=job_doc.name or "",
                runs_on=runs_on,
                timeout_minutes=job_doc.timeout_minutes,
                env=env,
                steps=tuple(_expand_step(job_name, i, s) for i, s in enumerate(job_doc.steps)),
            )
        )

    check_unique_names(jobs)
    return jobs


def parse_workflow(data: Union[Mapping[str, Any], WorkflowDocument]) -> PipelineConfig:
    doc = _document(data)
    _reject_unknown_keys(doc, WORKFLOW_IGNORED_KEYS)
    global_env = _str_map(doc.env)
    _check_expressions("", None, global_env)
    return PipelineConfig(
        name=doc.name,
        triggers=parse_triggers(doc.on),
        global_env=GlobalEnv(global_env),
        jobs=tuple(expand(doc)),
    )


def loads_workflow(text: str, source: str = "<string>") -> PipelineConfig:
    return parse_workflow(_load_yaml(text, source))


def load_workflow(path: Union[str, Path]) -> PipelineConfig:
    """
    Load a workflow from a YAML file path.

    Raises:
      FileNotFoundError if the file is missing
      ConfigError if it is not a valid workflow
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix not in (".yml", ".yaml"):
        raise ConfigError(f"Workflow must be a .yml/.yaml file, got: {wf_path.name}")
    return loads_workflow(wf_path.read_text(encoding="utf-8"), source=wf_path.name)
