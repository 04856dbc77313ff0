"""
dockrevui - A terminal control surface for the Dockrev image update manager.

This package lets operators browse services across compose stacks, see which
of them have a newer image available, and trigger update jobs against a
running Dockrev API.

Features:
  - Per-service update status (updatable, needs confirmation, cross tag,
    arch mismatch, blocked) derived from candidate/tag/arch data
  - Target version selection with same-series preference
  - Path and hash based routing with a reverse-proxy misroute diagnostic
  - Supervisor (self-upgrade helper) health probing

Main Components:
  - update_status.py: Tag series parsing and status classification
  - target.py: Update target resolution
  - routes.py: Route codec and navigation bus
  - health.py: Supervisor health monitor
  - backend.py: Dockrev REST client
  - textual_app.py: Textual UI

Usage:
  python -m dockrevui

Dependencies:
  - textual, rich, httpx, PyYAML
  - Python 3.10+
"""

import os
from pathlib import Path

__version__ = "0.1.0"


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/dockrevui/logs/dockrevui.log with fallback to /tmp.
    Creates directory if it doesn't exist.

    Returns:
        str: Absolute path to log file (/tmp/dockrevui.log as fallback)
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        xdg_data_home = Path.home() / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'dockrevui' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'dockrevui.log')
    except (PermissionError, OSError):
        return '/tmp/dockrevui.log'
