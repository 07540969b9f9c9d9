from .cancellation import CancellationToken
from .executor import Executor
from .models import ChangeOutcome, OutcomeStatus, RunReport

__all__ = ["CancellationToken", "Executor", "ChangeOutcome", "OutcomeStatus", "RunReport"]
