"""CI/CD artifact generation from a plan and run report."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from ..execution.models import RunReport
from ..planning.models import Plan
from ..utils.errors import ConvergeError
from ..utils.logging import get_logger

logger = get_logger("report.artifact")


def generate_artifacts(plan: Plan, output_dir: Path, report: Optional[RunReport] = None,
                       run_id: Optional[str] = None) -> None:
    """
    Write machine-readable artifacts for a run.

    Creates the following files in output_dir:
    - plan.json: Changes, stages and summary
    - report.json: Outcome of every change (only when a report is given)
    - metadata.json: Run metadata

    Args:
        plan: Plan that was executed (or only planned)
        output_dir: Directory to write artifacts to
        report: Run report from the executor
        run_id: Identifier of the run

    Raises:
        ConvergeError: If a file cannot be written
    """
    from .. import __version__

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConvergeError(f"Failed to create output directory: {e}")

    _write_json(output_dir / "plan.json", plan.to_dict())

    if report is not None:
        _write_json(output_dir / "report.json", report.to_dict())

    metadata = {
        "converge_version": __version__,
        "run_id": run_id,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "applied": report is not None,
        "success": report.success if report is not None else None,
    }
    _write_json(output_dir / "metadata.json", metadata)

    logger.info(f"Generated artifacts in: {output_dir}")


def _write_json(path: Path, data) -> None:
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, sort_keys=True, default=str)
        logger.debug(f"Written {path.name}: {path}")
    except (OSError, TypeError) as e:
        raise ConvergeError(f"Failed to write {path.name}: {e}")
