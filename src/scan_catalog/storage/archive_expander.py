#!/usr/bin/env python3
"""
Archive Expander

Expands the nested cabinet structure of the offline-scan catalog by invoking
an external extraction tool (cabextract, or expand.exe on Windows).

The outer wsusscn2.cab holds index.xml plus package*.cab members. The
package.cab member only carries the package index; every other package
cabinet is expanded into one shared catalog tree holding the x/, c/ and
l/<language>/ descriptor subtrees.
"""

import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from ..core.errors import ExpansionError
from ..core.update_join import DescriptorTree
from ..logging.workflow_logger import get_logger

logger = get_logger()


class ArchiveExpander:
    """Wraps the external cabinet extraction tool"""

    def __init__(self, expansion_config: Optional[Dict] = None):
        expansion_config = expansion_config or {}
        self.tool = expansion_config.get('tool', 'cabextract')
        self.windows_tool = expansion_config.get('windows_tool', 'expand')
        self.timeout = expansion_config.get('timeout')
        self.use_windows_tool = os.name == 'nt'

    def build_command(self, source: Path, target: Path) -> List[str]:
        if self.use_windows_tool:
            return [self.windows_tool, str(source), '-F:*', str(target)]
        return [self.tool, '-q', '-d', str(target), str(source)]

    def expand(self, source, target) -> Path:
        """
        Expand every member of a cabinet into target (created if absent).

        Raises:
            ExpansionError: If the source is missing, the tool is unavailable,
                            or the tool exits non-zero
        """
        source = Path(source)
        target = Path(target)

        if not source.is_file():
            raise ExpansionError(f"Cabinet not found: {source}")

        target.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(source, target)
        logger.debug(f"Running: {' '.join(cmd)}", group="EXPAND")

        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise ExpansionError(f"Extraction tool '{cmd[0]}' is not available: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise ExpansionError(f"Expanding {source.name} timed out after {self.timeout}s") from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "").strip()
            raise ExpansionError(f"Expanding {source.name} failed with exit code {e.returncode}: {detail}") from e

        return target


def require_marker(directory: Path, marker: str):
    """Raise ExpansionError unless the marker file exists in directory"""
    if not (Path(directory) / marker).is_file():
        raise ExpansionError(f"Expected marker '{marker}' not found in {directory}")


def inner_cabinets(outer_dir: Path, pattern: str = "package*.cab", index_cab: str = "package.cab") -> List[Path]:
    """Inner package cabinets holding descriptors, in name order"""
    return sorted(
        (path for path in Path(outer_dir).glob(pattern) if path.name.lower() != index_cab.lower()),
        key=lambda path: path.name
    )


def expand_catalog(cab_path, staging_dir, catalog_config: Optional[Dict] = None,
                   expander: Optional[ArchiveExpander] = None, language: Optional[str] = None) -> DescriptorTree:
    """
    Expand the catalog cabinet into staging_dir and return its descriptor tree.

    Layout produced:
        staging_dir/outer/    members of the outer cabinet (index.xml, package*.cab)
        staging_dir/catalog/  merged contents of the inner package cabinets

    Raises:
        ExpansionError: On tool failure or a missing marker / descriptor subtree
    """
    catalog_config = catalog_config or {}
    expander = expander or ArchiveExpander()
    staging_dir = Path(staging_dir)
    outer_dir = staging_dir / "outer"
    catalog_dir = staging_dir / "catalog"

    # Clear leftovers from a previous expansion
    for directory in (outer_dir, catalog_dir):
        if directory.exists():
            shutil.rmtree(directory)

    logger.info(f"Expanding outer cabinet {cab_path}", group="EXPAND")
    expander.expand(cab_path, outer_dir)
    require_marker(outer_dir, catalog_config.get('outer_marker', 'index.xml'))

    cabinets = inner_cabinets(outer_dir,
                              catalog_config.get('inner_cab_pattern', 'package*.cab'),
                              catalog_config.get('index_cab', 'package.cab'))
    if not cabinets:
        raise ExpansionError(f"No inner package cabinets found in {outer_dir}")

    for index, cabinet in enumerate(cabinets, start=1):
        logger.stage_progress(index, len(cabinets), cabinet.name, group="EXPAND")
        expander.expand(cabinet, catalog_dir)

    tree = DescriptorTree(catalog_dir,
                          language=language or catalog_config.get('language', 'en'),
                          descriptor_dirs=catalog_config.get('descriptor_dirs'))
    missing = tree.missing_directories()
    if missing:
        raise ExpansionError("Expanded catalog is missing descriptor directories: "
                             + ", ".join(str(path) for path in missing))

    logger.data_summary("Expansion", group="EXPAND", inner_cabinets=len(cabinets),
                        descriptors=len(tree.names()))
    return tree


def open_expanded_catalog(catalog_dir, catalog_config: Optional[Dict] = None,
                          language: Optional[str] = None) -> DescriptorTree:
    """Open an already-expanded catalog tree, checking its descriptor subtrees"""
    catalog_config = catalog_config or {}
    tree = DescriptorTree(catalog_dir,
                          language=language or catalog_config.get('language', 'en'),
                          descriptor_dirs=catalog_config.get('descriptor_dirs'))
    missing = tree.missing_directories()
    if missing:
        raise ExpansionError("Catalog directory is missing descriptor directories: "
                             + ", ".join(str(path) for path in missing))
    return tree
