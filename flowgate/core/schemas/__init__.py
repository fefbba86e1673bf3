from flowgate.core.schemas.analysis import (
    DEFAULT_RENDER_RESULT,
    FAILED_JOB_NUMBER,
    SETTLED_STATUSES,
    TERMINAL_STATUSES,
    Analysis,
    AnalysisStatus,
    parse_job_number,
)
from flowgate.core.schemas.catalog import (
    AnalysisServer,
    Catalog,
    Credentials,
    Dataset,
    ExpFile,
    Module,
    ModuleParam,
    ParamType,
    ServerPlatform,
)
from flowgate.core.schemas.job_result import JobResult, JobStatusBlock, OutputFile
from flowgate.core.schemas.parameters import (
    GeneratedFile,
    ResolvedParameter,
    ResolvedParameters,
)

__all__ = [
    "DEFAULT_RENDER_RESULT",
    "FAILED_JOB_NUMBER",
    "SETTLED_STATUSES",
    "TERMINAL_STATUSES",
    "Analysis",
    "AnalysisStatus",
    "parse_job_number",
    "AnalysisServer",
    "Catalog",
    "Credentials",
    "Dataset",
    "ExpFile",
    "Module",
    "ModuleParam",
    "ParamType",
    "ServerPlatform",
    "JobResult",
    "JobStatusBlock",
    "OutputFile",
    "GeneratedFile",
    "ResolvedParameter",
    "ResolvedParameters",
]
