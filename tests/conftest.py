"""
Shared test fixtures for ftpsync unit tests.

The transport fake, generated certificates and config isolation live in the
repository-level conftest.py so the module tests under src/ can use them too.
"""

import io

import pytest
from rich.console import Console


@pytest.fixture
def recording_console():
    """Rich console writing to an in-memory buffer.

    Read the output with ``recording_console.file.getvalue()``.
    """
    return Console(file=io.StringIO(), width=120, force_terminal=False)
