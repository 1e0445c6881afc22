"""
Directory organization utilities for run-based output management.
Manages the creation and organization of catalog runs with timestamp-based naming.
"""

import datetime
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Tuple

DEFAULT_SUBDIRS = ["staging", "output", "logs"]


def get_project_root() -> Path:
    """Get the root directory of the project (the directory holding run_tools.py)"""
    current_file = Path(__file__).resolve()

    for parent in current_file.parents:
        if (parent / "run_tools.py").exists():
            return parent

    raise RuntimeError("Could not find Scan Catalog Tools project root")


def get_runs_root() -> Path:
    """
    Resolve the directory that holds run directories.

    Under the unified test runner (CONSOLIDATED_TEST_RUN=1) runs are placed in
    the consolidated test run's logs directory instead of runs/.
    """
    if os.environ.get('CONSOLIDATED_TEST_RUN') == '1':
        consolidated_path = Path(os.environ.get('CONSOLIDATED_TEST_RUN_PATH', ''))
        if consolidated_path.exists():
            return consolidated_path / "logs"
    try:
        return get_project_root() / "runs"
    except RuntimeError:
        return Path.cwd() / "runs"


def _clean_context(context: str) -> str:
    return "".join(c for c in context if c.isalnum() or c in ("-", "_", "."))


def create_run_directory(run_context: str = None, is_test: bool = False,
                         subdirs: List[str] = None, runs_root: Optional[Path] = None) -> Tuple[Path, str]:
    """
    Create a new run directory with timestamp-based naming.

    Args:
        run_context: Optional context string (e.g., 'catalog_en') appended to the timestamp
        is_test: Whether this is a test run (adds 'TEST_' prefix to context)
        subdirs: Subdirectories to create (defaults to staging, output, logs)
        runs_root: Directory to create the run in (defaults to get_runs_root())

    Returns:
        Tuple of (run_directory_path, run_id)
    """
    timestamp = datetime.datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    if run_context:
        context = f"TEST_{run_context}" if is_test else run_context
        run_id = f"{timestamp}_{_clean_context(context)}"
    else:
        run_id = f"{timestamp}_TEST_run" if is_test else timestamp

    run_path = Path(runs_root) if runs_root else get_runs_root()
    run_path = run_path / run_id

    for subdir in (subdirs if subdirs is not None else DEFAULT_SUBDIRS):
        (run_path / subdir).mkdir(parents=True, exist_ok=True)

    return run_path, run_id


def get_current_run_paths(run_path: Path) -> Dict[str, Path]:
    """
    Get standardized paths for a run directory.

    Returns:
        Dictionary with keys: staging, output, logs, run_root
    """
    run_path = Path(run_path)
    return {
        "staging": run_path / "staging",
        "output": run_path / "output",
        "logs": run_path / "logs",
        "run_root": run_path
    }


def cleanup_staging(run_paths: Dict[str, Path]) -> bool:
    """Remove the staging directory of a run; returns True if something was removed"""
    staging = run_paths.get("staging")
    if staging and staging.exists():
        shutil.rmtree(staging)
        return True
    return False
