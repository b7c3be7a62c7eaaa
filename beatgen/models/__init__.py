from .credential import Credential, CredentialStatus
from .work_template import WorkTemplate
from .execution_log import ExecutionLogEntry, ExecutionResult

__all__ = [
    "Credential",
    "CredentialStatus",
    "WorkTemplate",
    "ExecutionLogEntry",
    "ExecutionResult",
]
