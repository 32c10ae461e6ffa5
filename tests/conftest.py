"""Shared fixtures for the jugglog test suite."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.machines import build_catalog


# ── Catalog fixtures ─────────────────────────────────────

@pytest.fixture
def two_metric_catalog():
    """Machine with only grape and REG-single tables.

    Setting-4 rates are 1/6.25 and 1/250, so 1000 games give integer counts.
    """
    return build_catalog([{
        'id': 'TWO',
        'name': 'two metrics',
        'visible_metrics': ['grape', 'single_reg'],
        'odds': {
            'grape': [6.6, 6.5, 6.4, 6.25, 6.1, 6.0],
            'single_reg': [500, 400, 320, 250, 200, 160],
        },
    }])


@pytest.fixture
def sample_stats():
    """3000G session that looks like a high setting on MYJUG."""
    return {
        'seg_games': 3000,
        'big_single': 9,
        'big_cherry': 3,
        'reg_single': 8,
        'reg_cherry': 3,
        'grapes': 525,
        'non_overlap_cherries': 84,
        'total_games': 4200,
        'total_big': 16,
        'total_reg': 14,
        'diff': 900,
    }
