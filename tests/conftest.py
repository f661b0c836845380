"""Suite-wide pytest hooks and fixtures for volmon.

Tests marked ``system`` run the real host tools (df, findmnt, diskutil) and
are skipped unless ``--run-system`` is given.
"""

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

MARKERS = {
    "system": "runs real host volume commands (df, findmnt, diskutil)",
    "slow": "slow running test",
    "asyncio": "async test",
}


def pytest_configure(config):
    for name, description in MARKERS.items():
        config.addinivalue_line("markers", f"{name}: {description}")


def pytest_addoption(parser):
    parser.addoption(
        "--run-system",
        action="store_true",
        default=False,
        help="also run tests that interrogate the host's real volumes",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-system"):
        return
    skip = pytest.mark.skip(reason="host volume test, use --run-system")
    for item in items:
        if "system" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def runner_factory():
    """A FakeRunnerFactory with no scripted responses."""
    from tests.infrastructure.mocks.process_mocks import FakeRunnerFactory
    return FakeRunnerFactory()
