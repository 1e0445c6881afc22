#!/usr/bin/env python3
"""
Centralized Logging Utility for Scan Catalog Tools

This module provides organized logging functionality with groupings for the
workflow stages of the catalog conversion pipeline (fetch, expansion,
descriptor parsing, join, output).
"""

import json
import os
import re
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from tqdm import tqdm


class LogLevel(Enum):
    """Log level enumeration"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogGroup(Enum):
    """Pipeline stages used to group and color log output"""
    INIT = "INIT"
    FETCH = "FETCH"
    EXPAND = "EXPAND"
    PARSE = "PARSE"
    JOIN = "JOIN"
    OUTPUT = "OUTPUT"
    COMPLETION = "COMPLETION"


_LEVEL_HIERARCHY = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARNING: 2,
    LogLevel.ERROR: 3
}

_ANSI_ESCAPE = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')


class WorkflowLogger:
    """Centralized logger for the catalog conversion workflow"""

    def __init__(self, config_path: Optional[str] = None):
        """Create a logger configured from config_path (package config.json by default)"""
        self.log_file = None
        self.current_log_path = None
        self.log_directory = None
        self.configure(config_path)

    def configure(self, config_path: Optional[str] = None):
        """Load (or reload) logging settings from config.json"""
        self.config = self._load_config(config_path)
        self.logging_config = self.config.get('logging', {})
        self.enabled = self.logging_config.get('enabled', True)
        self.level = LogLevel(self.logging_config.get('level', 'INFO'))
        self.format_string = self.logging_config.get('format', '[{timestamp}] [{level}] {message}')
        self.groups = self.logging_config.get('groups', {})
        self.colors = {
            'blue': '\033[94m',
            'green': '\033[92m',
            'yellow': '\033[93m',
            'cyan': '\033[96m',
            'magenta': '\033[95m',
            'white': '\033[97m',
            'red': '\033[91m',
            'reset': '\033[0m'
        }

        # Avoid colors in non-interactive terminals
        self.use_colors = sys.stdout.isatty() and os.name != 'nt'

    def _load_config(self, config_path: Optional[str] = None) -> Dict[str, Any]:
        """Read the JSON config; an unreadable file yields an empty config"""
        if config_path is None:
            config_path = os.path.join(os.path.dirname(__file__), '..', 'config.json')

        try:
            with open(config_path, 'r') as f:
                return json.load(f)
        except (FileNotFoundError, json.JSONDecodeError) as e:
            print(f"Warning: Ignoring unreadable config {config_path}: {e}")
            return {}

    def set_level(self, level: str):
        """Override the configured minimum log level"""
        self.level = LogLevel(level.upper())

    def set_run_logs_directory(self, run_logs_path: str):
        """Point file logging at a run's logs directory"""
        self.log_directory = run_logs_path

    def _resolve_group(self, group) -> LogGroup:
        if isinstance(group, LogGroup):
            return group
        try:
            return LogGroup(str(group).upper())
        except ValueError:
            return LogGroup.INIT

    def _should_log(self, level: LogLevel, group: LogGroup) -> bool:
        """True when the level passes the threshold and the group is enabled"""
        if not self.enabled:
            return False
        group_config = self.groups.get(group.value, {})
        if not group_config.get('enabled', True):
            return False
        return _LEVEL_HIERARCHY[level] >= _LEVEL_HIERARCHY[self.level]

    def _get_timestamp(self) -> str:
        """Get formatted timestamp"""
        return datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')

    def _colorize(self, group: LogGroup, text: str) -> str:
        if not self.use_colors:
            return text
        group_config = self.groups.get(group.value, {})
        color = self.colors.get(group_config.get('color', 'white'), '')
        return f"{color}{text}{self.colors['reset']}"

    def _format_message(self, level: LogLevel, group: LogGroup, message: str) -> str:
        """Format the log message"""
        formatted = self.format_string.format(
            timestamp=self._get_timestamp(),
            level=level.value,
            message=message
        )
        if level == LogLevel.ERROR and self.use_colors:
            return f"{self.colors['red']}{formatted}{self.colors['reset']}"
        return formatted

    def _log_banner(self, group, message: str):
        """Emit a colored stage banner (no level tag)"""
        group_enum = self._resolve_group(group)
        if not self.enabled:
            return
        if not self.groups.get(group_enum.value, {}).get('enabled', True):
            return
        self._print_message(self._colorize(group_enum, f"[{self._get_timestamp()}] {message}"))

    def log(self, level: LogLevel, group, message: str):
        """Emit message when level and group allow it"""
        group_enum = self._resolve_group(group)
        if self._should_log(level, group_enum):
            self._print_message(self._format_message(level, group_enum, message))

    def debug(self, message: str, group: str = "INIT"):
        """Log a debug message"""
        self.log(LogLevel.DEBUG, group, message)

    def info(self, message: str, group: str = "INIT"):
        """Log an info message"""
        self.log(LogLevel.INFO, group, message)

    def warning(self, message: str, group: str = "INIT"):
        """Log a warning message"""
        self.log(LogLevel.WARNING, group, message)

    def error(self, message: str, group: str = "COMPLETION"):
        """Log an error message"""
        self.log(LogLevel.ERROR, group, message)

    def stage_start(self, stage_name: str, details: str = "", group: str = "INIT"):
        """Banner opening a pipeline stage"""
        extra = f" - {details}" if details else ""
        self._log_banner(group, f"=== Starting {stage_name}{extra} ===")

    def stage_end(self, stage_name: str, details: str = "", group: str = "INIT"):
        """Banner closing a pipeline stage"""
        extra = f" - {details}" if details else ""
        self._log_banner(group, f"=== Completed {stage_name}{extra} ===")

    def stage_progress(self, current: int, total: int, item: str = "", group: str = "INIT"):
        """Log current/total with a percentage"""
        progress_pct = (current / total * 100) if total > 0 else 0
        item_info = f" ({item})" if item else ""
        self.info(f"Progress: {current}/{total} ({progress_pct:.1f}%){item_info}", group=group)

    def data_summary(self, operation: str, group: str = "JOIN", **kwargs):
        """Log key=value counters for one operation"""
        details = ", ".join([f"{k}={v}" for k, v in kwargs.items()])
        self.info(f"[{operation}]: {details}", group=group)

    def file_operation(self, operation: str, filepath: str, details: str = "", group: str = "OUTPUT"):
        """Log a file operation"""
        extra = f" - {details}" if details else ""
        self.info(f"{operation.capitalize()} {filepath}{extra}", group=group)

    def _print_message(self, message: str):
        """Write above any active tqdm bar (ASCII fallback) and to the run log file"""
        try:
            tqdm.write(message)
        except UnicodeEncodeError:
            tqdm.write(message.encode('ascii', errors='replace').decode('ascii'))

        if self.log_file:
            try:
                self.log_file.write(_ANSI_ESCAPE.sub('', message) + '\n')
                self.log_file.flush()
            except OSError as e:
                # File logging errors must not break the run
                print(f"Warning: Could not write to run log: {e}")

    def start_file_logging(self, run_parameters: str):
        """Mirror output into <logs>/<date>_<run_parameters>.log

        Note: set_run_logs_directory() must be called first.
        """
        if not self.enabled:
            return

        if not self.log_directory:
            print("Warning: File logging not started - no log directory set. Call set_run_logs_directory() first.")
            return

        try:
            os.makedirs(self.log_directory, exist_ok=True)

            date_str = datetime.now(timezone.utc).strftime("%Y.%m.%d")
            clean_params = re.sub(r'[<>:"/\\|?*]', '_', run_parameters).replace(' ', '_')
            log_path = os.path.join(self.log_directory, f"{date_str}_{clean_params}.log")

            if self.log_file and self.current_log_path == log_path:
                return
            if self.log_file:
                self.stop_file_logging()

            self.current_log_path = log_path
            if os.path.exists(log_path):
                self.log_file = open(log_path, 'a', encoding='utf-8')
                self.log_file.write(f"\n# Logging resumed: {self._get_timestamp()}\n")
                self.log_file.write(f"# Parameters: {run_parameters}\n\n")
            else:
                self.log_file = open(log_path, 'w', encoding='utf-8')
            self.log_file.flush()

            print(f"[{self._get_timestamp()}] [INFO] Run log: {log_path}")

        except OSError as e:
            print(f"Warning: Could not open run log: {e}")
            self.log_file = None

    def stop_file_logging(self):
        """Write the log footer and close the run log file"""
        if self.log_file:
            try:
                self.log_file.write("\n# " + "=" * 50 + "\n")
                self.log_file.write(f"# Completed: {self._get_timestamp()}\n")
                self.log_file.write("# End of log\n")
                self.log_file.close()
            except OSError as e:
                print(f"Warning: Could not close run log {self.current_log_path}: {e}")
            finally:
                self.log_file = None
                self.current_log_path = None


# Global logger instance
_logger_instance = None


def get_logger() -> WorkflowLogger:
    """Return the process-wide WorkflowLogger, creating it on first use"""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = WorkflowLogger()
    return _logger_instance


def reinitialize_logger(config_path: Optional[str] = None) -> WorkflowLogger:
    """Reload the global logger's configuration in place

    Modules hold the instance returned by get_logger() at import time, so the
    instance itself is reconfigured rather than replaced.
    """
    logger = get_logger()
    logger.configure(config_path)
    return logger


# Stage banners for each pipeline step
def start_fetch(details: str = ""):
    """Mark the start of the catalog download stage"""
    get_logger().stage_start("Catalog Download", details, group="FETCH")


def end_fetch(details: str = ""):
    """Mark the end of the catalog download stage"""
    get_logger().stage_end("Catalog Download", details, group="FETCH")


def start_expansion(details: str = ""):
    """Mark the start of the archive expansion stage"""
    get_logger().stage_start("Archive Expansion", details, group="EXPAND")


def end_expansion(details: str = ""):
    """Mark the end of the archive expansion stage"""
    get_logger().stage_end("Archive Expansion", details, group="EXPAND")


def start_join(details: str = ""):
    """Mark the start of the descriptor join stage"""
    get_logger().stage_start("Descriptor Join", details, group="JOIN")


def end_join(details: str = ""):
    """Mark the end of the descriptor join stage"""
    get_logger().stage_end("Descriptor Join", details, group="JOIN")


def start_output(details: str = ""):
    """Mark the start of the output stage"""
    get_logger().stage_start("Result Output", details, group="OUTPUT")


def end_output(details: str = ""):
    """Mark the end of the output stage"""
    get_logger().stage_end("Result Output", details, group="OUTPUT")
