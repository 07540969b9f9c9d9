from .differ import diff
from .models import Change, ChangeKind, Plan
from .planner import build_plan

__all__ = ["diff", "build_plan", "Change", "ChangeKind", "Plan"]
