#!/usr/bin/env python3
"""
Catalog Conversion Pipeline

Fetches the offline-scan catalog, expands its nested cabinets, joins the
per-update descriptors and writes one JSON document keyed by UpdateID.

Usage:
    python run_tools.py                           # download, expand, convert
    python run_tools.py --cab wsusscn2.cab        # use a local catalog cabinet
    python run_tools.py --catalog-dir ./catalog   # use an already-expanded tree
"""

import argparse
import json
import os
import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional

from tqdm import tqdm

from .errors import CatalogToolError
from .update_join import JoinContext, UpdateOutcome, build_result_collection
from ..logging.workflow_logger import (
    get_logger, reinitialize_logger,
    start_fetch, end_fetch,
    start_expansion, end_expansion,
    start_join, end_join,
    start_output, end_output
)
from ..storage.archive_expander import ArchiveExpander, expand_catalog, open_expanded_catalog
from ..storage.catalog_fetcher import fetch_catalog
from ..storage.result_writer import write_results
from ..storage.run_organization import cleanup_staging, create_run_directory, get_current_run_paths

logger = get_logger()


def load_config(config_path: Optional[str] = None) -> Dict:
    """Load configuration from config.json"""
    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), '..', 'config.json')
    with open(config_path, 'r') as f:
        return json.load(f)


class JoinProgress:
    """tqdm bar plus periodic progress log lines for the join pass"""

    def __init__(self, total: int, log_interval: int = 1000, show_bar: bool = True):
        self.bar = tqdm(total=total, desc="Joining descriptors", unit="update", disable=not show_bar)
        self.log_interval = max(1, log_interval)

    def __call__(self, context: JoinContext, outcome: UpdateOutcome):
        self.bar.update(1)
        if context.processed % self.log_interval == 0 or context.processed == context.total:
            logger.stage_progress(context.processed, context.total,
                                  f"{context.elapsed():.1f}s elapsed", group="JOIN")

    def close(self):
        self.bar.close()


def _prepare_catalog(args, config: Dict, run_paths: Dict[str, Path], language: str):
    """Resolve the descriptor tree from --catalog-dir, --cab, or a fresh download"""
    catalog_config = config.get('catalog', {})

    if args.catalog_dir:
        logger.info(f"Using expanded catalog directory: {args.catalog_dir}", group="INIT")
        return open_expanded_catalog(args.catalog_dir, catalog_config, language=language)

    if args.cab:
        cab_path = Path(args.cab)
        logger.info(f"Using local catalog cabinet: {cab_path}", group="INIT")
    else:
        api_config = config.get('api', {})
        application = config.get('application', {})
        url = args.url or catalog_config['url']
        start_fetch(url)
        cab_path = fetch_catalog(
            url,
            run_paths["staging"] / catalog_config.get('filename', 'wsusscn2.cab'),
            timeout=api_config.get('timeouts', {}).get('catalog_download', 300),
            max_attempts=api_config.get('retry', {}).get('max_attempts', 3),
            retry_delay=api_config.get('retry', {}).get('delay_seconds', 10),
            chunk_size=api_config.get('download', {}).get('chunk_size', 1024 * 1024),
            user_agent=f"{application.get('toolname', 'Scan_Catalog_Tools')}/{application.get('version', 'unknown')}",
            show_progress=not args.no_progress
        )
        end_fetch(cab_path.name)

    start_expansion(cab_path.name)
    tree = expand_catalog(cab_path, run_paths["staging"], catalog_config,
                          expander=ArchiveExpander(config.get('expansion', {})), language=language)
    end_expansion(str(tree.root))
    return tree


def run_pipeline(args, config: Dict, abort_event: Optional[threading.Event] = None) -> int:
    """
    Run fetch -> expand -> join -> write. Returns the process exit code.

    Any CatalogToolError aborts the run before output is written.
    """
    language = args.language or config.get('catalog', {}).get('language', 'en')
    join_config = config.get('join', {})
    output_config = config.get('output', {})
    workers = args.workers if args.workers is not None else join_config.get('workers', 1)
    abort_event = abort_event or threading.Event()

    run_path, run_id = create_run_directory(f"catalog_{language}")
    run_paths = get_current_run_paths(run_path)
    logger.set_run_logs_directory(str(run_paths["logs"]))
    logger.start_file_logging(f"catalog_{language}")
    logger.info(f"Run directory: {run_id}", group="INIT")

    progress = None
    try:
        tree = _prepare_catalog(args, config, run_paths, language)

        names = tree.names()
        start_join(f"{len(names):,} descriptors, language '{language}', {workers} worker(s)")
        progress = JoinProgress(len(names), join_config.get('progress_log_interval', 1000),
                                show_bar=not args.no_progress)
        context = JoinContext(progress=progress, abort_event=abort_event)
        build_result_collection(names, tree.read, context=context, workers=workers)
        progress.close()
        progress = None
        end_join(f"{len(context.results):,} updates")
        logger.info(context.report(), group="COMPLETION")

        output_path = Path(args.output) if args.output else run_paths["output"] / output_config.get('filename', 'wsusscn2.json')
        start_output(str(output_path))
        write_results(context.results, output_path,
                      indent=output_config.get('indent', False),
                      sort_keys=output_config.get('sort_keys', True))
        end_output()

        if config.get('staging', {}).get('cleanup_on_success', True) and not args.keep_staging:
            if cleanup_staging(run_paths):
                logger.debug(f"Removed staging directory {run_paths['staging']}", group="COMPLETION")

        return 0

    except CatalogToolError as e:
        descriptor = getattr(e, 'descriptor_name', None)
        detail = f" (descriptor {descriptor})" if descriptor else ""
        logger.error(f"{type(e).__name__}: {e}{detail} - no output written", group="COMPLETION")
        return 1
    except KeyboardInterrupt:
        abort_event.set()
        logger.error("Run aborted by user - no output written", group="COMPLETION")
        return 1
    finally:
        if progress is not None:
            progress.close()
        logger.stop_file_logging()


def build_argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Convert the offline-scan update catalog (wsusscn2.cab) to JSON")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--url", help="Catalog URL (overrides config)")
    source.add_argument("--cab", help="Local catalog cabinet; skips the download")
    source.add_argument("--catalog-dir", help="Already-expanded catalog directory; skips download and expansion")
    parser.add_argument("--output", help="Output JSON path (default: runs/<run_id>/output/<output.filename>)")
    parser.add_argument("--language", help="Localized properties language directory (default: catalog.language)")
    parser.add_argument("--workers", type=int, help="Descriptor parser threads (default: join.workers)")
    parser.add_argument("--keep-staging", action="store_true", help="Keep downloaded and expanded files after success")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bars")
    parser.add_argument("--config", help="Alternate config.json")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], type=str.upper,
                        help="Minimum log level for this run (default: logging.level)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main function: parse arguments, load config and run the pipeline."""
    args = build_argparser().parse_args(argv)

    if args.workers is not None and args.workers < 1:
        logger.error("--workers must be at least 1", group="INIT")
        return 1

    try:
        config = load_config(args.config)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not load configuration: {e}", group="INIT")
        return 1

    if args.config:
        reinitialize_logger(args.config)
    previous_level = logger.level
    if args.log_level:
        logger.set_level(args.log_level)
    try:
        return run_pipeline(args, config)
    finally:
        logger.level = previous_level


if __name__ == "__main__":
    sys.exit(main())
