"""Vulture whitelist: references that appear unused but are called dynamically.

Vulture scans for unreachable code.  Items listed here are known false
positives: entry points invoked by setuptools, pytest fixtures consumed
via dependency injection, dataclass lifecycle hooks, etc.

Usage:
    vulture portfoliocollector tests vulture_whitelist.py
"""

# ── Entry points (called by setuptools console_scripts, not imported) ──
from portfoliocollector.cli import main as cli_main  # noqa: F401
from portfoliocollector.main import main  # noqa: F401

# ── Pytest fixtures (injected by pytest, never called directly) ──
from tests.conftest import btc  # noqa: F401
from tests.conftest import config  # noqa: F401
from tests.conftest import db  # noqa: F401
from tests.conftest import now  # noqa: F401
from tests.conftest import provider  # noqa: F401

# ── Dataclass lifecycle hooks (called by @dataclass, not user code) ──
from portfoliocollector.config import CollectorConfig  # noqa: F401

CollectorConfig.__post_init__  # noqa: B018
