"""
Helper Functions and Utilities

This module provides common utility functions used throughout the splitstree
package: logging configuration, progress reporting for long-running
algorithms, and file/path helpers.

Key Utilities:
1. Logging Configuration
   - Centralized logging setup for the ``splitstree`` package logger
   - Console and optional file output

2. Progress Tracking
   - ``ProgressTracker`` logs progress of bootstrap runs, confidence network
     passes and simulations at 10% intervals

3. File Operations
   - Cross-platform path handling using pathlib
   - Automatic directory creation
   - Filename and label sanitisation

4. General Helpers
   - Time formatting
   - Float formatting shared by the text exporters

Example Usage:
    >>> from splitstree.utils import setup_logging, ProgressTracker
    >>> logger = setup_logging(log_level="DEBUG")
    >>> tracker = ProgressTracker(total=100, description="Bootstrap")
    >>> for _ in range(100):
    ...     tracker.update()
    >>> tracker.finish()
"""

from typing import Optional, Union
from pathlib import Path
from datetime import datetime
import logging
import math
import re
import sys

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# Logging Configuration
# ============================================================================

def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for splitstree.

    Sets up the package logger with console and optional file output.

    Parameters
    ----------
    log_level : str, optional
        Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL (default: INFO)
    log_file : str, optional
        Path to log file. If None, logs only to console (default: None)
    format_string : str, optional
        Custom format string for log messages. If None, uses default format

    Returns
    -------
    logging.Logger
        Configured logger instance

    Examples
    --------
    >>> logger = setup_logging(log_level="DEBUG", log_file="analysis.log")
    >>> logger.info("Starting analysis")

    Notes
    -----
    The default format includes timestamp, level, and message:
    [2025-11-03 10:30:45] INFO: Starting analysis
    """
    package_logger = logging.getLogger("splitstree")
    package_logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers to avoid duplicates
    package_logger.handlers.clear()

    if format_string is None:
        format_string = "[%(asctime)s] %(levelname)s: %(message)s"

    formatter = logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

        package_logger.info(f"Logging to file: {log_file}")

    return package_logger


def log_function_call(func_name: str, **kwargs) -> None:
    """
    Log a function call with its parameters at DEBUG level.

    Examples
    --------
    >>> log_function_call("run_bootstrap", runs=100, level=0.95)
    """
    params = ", ".join(f"{k}={v}" for k, v in kwargs.items())
    logger.debug(f"Calling {func_name}({params})")


# ============================================================================
# File I/O and Path Handling
# ============================================================================

def create_output_directory(output_dir: Union[str, Path]) -> Path:
    """
    Create output directory if it doesn't exist.

    Parameters
    ----------
    output_dir : Union[str, Path]
        Path to output directory

    Returns
    -------
    Path
        Path object for output directory

    Raises
    ------
    OSError
        If directory cannot be created due to permissions or other issues
    """
    path = Path(output_dir)

    try:
        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Created/verified output directory: {path}")
        return path
    except OSError as e:
        logger.error(f"Failed to create directory {path}: {e}")
        raise


def safe_file_path(
    base_dir: Union[str, Path],
    filename: str,
    extension: Optional[str] = None
) -> Path:
    """
    Create a safe file path with optional extension.

    Ensures directory exists and handles filename sanitization.

    Examples
    --------
    >>> path = safe_file_path("results", "primates run 1", ".nex")
    >>> print(path)
    results/primates_run_1.nex
    """
    base = Path(base_dir)
    base.mkdir(parents=True, exist_ok=True)

    safe_name = sanitize_filename(filename)

    if extension:
        if not extension.startswith('.'):
            extension = '.' + extension
        safe_name += extension

    return base / safe_name


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename for cross-platform compatibility.

    Replaces spaces with underscores and removes problematic characters.

    Examples
    --------
    >>> sanitize_filename("Great Apes (mtDNA)")
    'Great_Apes_mtDNA'
    """
    safe = filename.replace(' ', '_')
    safe = re.sub(r'[^\w\-.]', '_', safe)
    safe = re.sub(r'_+', '_', safe)
    safe = safe.strip('_')
    return safe


def dataset_name_from_path(path: Union[str, Path]) -> str:
    """
    Derive a dataset name from an input file path.

    Examples
    --------
    >>> dataset_name_from_path("data/primates.aligned.fasta")
    'primates'
    """
    name = Path(path).name
    stem = name.split('.')[0] if '.' in name else name
    return sanitize_filename(stem) or "dataset"


# ============================================================================
# Formatting Utilities
# ============================================================================

def format_float(value: float) -> str:
    """
    Format a float compactly for text output.

    Integral values keep one decimal place, other values use up to ten
    significant digits.

    Examples
    --------
    >>> format_float(1.0)
    '1.0'
    >>> format_float(0.123456789012)
    '0.123456789'
    """
    value = float(value)
    if math.isfinite(value) and value == int(value) and abs(value) < 1e15:
        return f"{value:.1f}"
    return f"{value:.10g}"


def format_elapsed_time(seconds: float) -> str:
    """
    Format elapsed time in human-readable format.

    Examples
    --------
    >>> format_elapsed_time(45)
    '45s'
    >>> format_elapsed_time(90)
    '1.5m'
    """
    if seconds < 60:
        return f"{seconds:.0f}s"

    minutes = seconds / 60
    if minutes < 60:
        return f"{minutes:.1f}m"

    hours = minutes / 60
    minutes_remainder = minutes % 60

    if hours < 24:
        return f"{int(hours)}h {int(minutes_remainder)}m"

    days = hours / 24
    hours_remainder = hours % 24
    return f"{int(days)}d {int(hours_remainder)}h"


# ============================================================================
# Progress Tracking
# ============================================================================

class ProgressTracker:
    """
    Simple progress tracker for long-running operations.

    Progress can be advanced item by item with ``update`` or set to an
    absolute position with ``set_progress``. A message is logged each time
    another 10% of the work is done.

    Examples
    --------
    >>> tracker = ProgressTracker(total=100, description="Processing")
    >>> for i in range(100):
    ...     tracker.update()
    >>> tracker.finish()
    """

    def __init__(self, total: int, description: str = "Progress"):
        """
        Initialize progress tracker.

        Parameters
        ----------
        total : int
            Total number of items to process
        description : str
            Description of the operation
        """
        self.total = max(int(total), 1)
        self.description = description
        self.current = 0
        self.start_time = datetime.now()
        self.last_log_percent = 0

    @property
    def percent(self) -> float:
        return (self.current / self.total) * 100

    def update(self, n: int = 1) -> None:
        """
        Update progress by n items.

        Parameters
        ----------
        n : int
            Number of items completed
        """
        self.set_progress(self.current + n)

    def set_progress(self, current: int) -> None:
        """Set the absolute number of completed items."""
        self.current = min(int(current), self.total)
        percent = self.percent

        # Log at 10% intervals
        if percent - self.last_log_percent >= 10:
            elapsed = (datetime.now() - self.start_time).total_seconds()
            rate = self.current / elapsed if elapsed > 0 else 0
            eta = (self.total - self.current) / rate if rate > 0 else 0

            logger.info(
                f"{self.description}: {self.current}/{self.total} "
                f"({percent:.1f}%) - ETA: {format_elapsed_time(eta)}"
            )
            self.last_log_percent = int(percent / 10) * 10

    def finish(self) -> None:
        """Log completion."""
        elapsed = (datetime.now() - self.start_time).total_seconds()
        logger.info(
            f"{self.description} complete: {self.current} items "
            f"in {format_elapsed_time(elapsed)}"
        )
