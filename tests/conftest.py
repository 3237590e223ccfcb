"""Shared fixtures for clusterform tests."""
import sys
from pathlib import Path

_SRC = Path(__file__).resolve().parent.parent / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest


@pytest.fixture
def workspace_root(tmp_path):
    """An empty converger workspace directory."""
    workspace = tmp_path / 'workspace'
    workspace.mkdir()
    return workspace


@pytest.fixture
def definition_file(tmp_path):
    """A one-group YAML cluster definition."""
    path = tmp_path / 'cluster.yaml'
    path.write_text(
        'groups:\n'
        '  - region: us-east-1\n'
        '    labels: [x, y]\n'
    )
    return path
