from .execution_logs import (
    ExecutionLogModel as ExecutionLogModel,
    LogSearchEntryModel as LogSearchEntryModel,
    DeadLetterModel as DeadLetterModel,
)
from .traces import TraceModel as TraceModel
