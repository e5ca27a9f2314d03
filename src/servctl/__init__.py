"""
servctl - Interactive terminal consoles and CLIs for Docker and vsftpd.

This package wraps two system services with one-shot commands and a
keyboard-driven, single-threaded curses console for each:

  - Docker console: containers, images, volumes and networks, with a
    volume "used by" index and confirmation-gated destructive actions
  - FTP console: vsftpd status, configuration file, logs and tools

Main Components:
  - backend.py: Docker resource query adapter (list/inspect/mutate)
  - usage.py: Volume usage index builder
  - state.py: View model (view, items, selection)
  - keys.py: Keyboard input decoder
  - main_actions.py / main_bulk.py: Action dispatcher and bulk teardown
  - ui.py: Curses rendering
  - main.py: Console loop
  - ftp.py / ftp_console.py: vsftpd adapter and console
  - cli.py: Non-interactive command line

Usage:
  servctl-docker -i
  servctl-ftp status
  python -m servctl docker list

Dependencies:
  - docker>=7.0.0
  - PyYAML, rich
  - Python 3.10+
  - curses (built-in, not available on Windows natively)
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

__version__ = "0.2.0"


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/servctl/logs/servctl.log with fallback to /tmp.
    Creates directory if it doesn't exist.

    Returns:
        str: Absolute path to log file (/tmp/servctl.log as fallback)
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        xdg_data_home = Path.home() / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'servctl' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'servctl.log')
    except (PermissionError, OSError):
        return '/tmp/servctl.log'


def configure_logging(level: Optional[str] = None) -> str:
    """
    Route the package's log records to a rotating file.

    Curses owns the terminal while a console runs, so nothing is logged to
    stdout/stderr. Level, path and rotation come from the user configuration
    unless ``level`` overrides it.

    Returns:
        str: The log file in use
    """
    from .config import config_manager

    log_cfg = config_manager.get_config().logging
    path = log_cfg.file_path or get_log_path()
    handler = RotatingFileHandler(
        path,
        maxBytes=log_cfg.max_size_mb * 1024 * 1024,
        backupCount=log_cfg.backup_count,
    )
    handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))

    root = logging.getLogger(__name__)
    root.handlers[:] = [handler]
    root.setLevel((level or config_manager.get_log_level()).upper())
    root.propagate = False
    return path
