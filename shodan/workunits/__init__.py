from shodan.workunits.executor import (
    JOB_TYPE_LABEL,
    LocalWorkUnitExecutor,
    WorkUnit,
    WorkUnitExecutor,
    WorkUnitExistsError,
    WorkUnitNotFoundError,
    WorkUnitPhase,
    WorkUnitSpec,
    shell_runner,
)

__all__ = [
    "JOB_TYPE_LABEL",
    "LocalWorkUnitExecutor",
    "WorkUnit",
    "WorkUnitExecutor",
    "WorkUnitExistsError",
    "WorkUnitNotFoundError",
    "WorkUnitPhase",
    "WorkUnitSpec",
    "shell_runner",
]
