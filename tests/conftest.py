"""
Shared fixtures: a synthetic table with the computer-activity schema.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

COLUMNS = [
    'lread', 'lwrite', 'scall', 'sread', 'swrite', 'fork', 'exec', 'rchar',
    'wchar', 'pgout', 'ppgout', 'pgfree', 'pgscan', 'atch', 'pgin', 'ppgin',
    'pflt', 'vflt', 'runqsz', 'freemem', 'freeswap', 'usr'
]


def make_cpu_frame(n_samples: int = 600, seed: int = 0) -> pd.DataFrame:
    """
    Synthetic observation table.

    Several feature pairs are strongly correlated, and usr is bimodal: rows
    with little free swap sit in [0, 2], the rest depend linearly on queue
    size and a few load features.
    """
    rng = np.random.RandomState(seed)
    n = n_samples

    lread = rng.gamma(2.0, 10.0, n)
    scall = rng.normal(2000, 400, n)
    sread = rng.gamma(3.0, 60.0, n)
    fork = rng.gamma(2.0, 1.0, n)
    pgout = rng.gamma(1.5, 2.0, n)
    pgfree = rng.gamma(1.5, 8.0, n)
    pgin = rng.gamma(2.0, 4.0, n)
    pflt = fork * 40 + rng.normal(0, 10, n)
    rchar = rng.gamma(2.0, 1e5, n)
    runqsz = 1.0 + rng.exponential(1.5, n)
    freemem = rng.uniform(100, 5000, n)
    freeswap = rng.uniform(2e5, 2.5e6, n)

    frame = pd.DataFrame({
        'lread': lread,
        'lwrite': lread * 0.5 + rng.normal(0, 5, n),
        'scall': scall,
        'sread': sread,
        'swrite': sread * 0.7 + rng.normal(0, 8, n),
        'fork': fork,
        'exec': fork * 1.2 + rng.normal(0, 0.3, n),
        'rchar': rchar,
        'wchar': rchar * 0.4 + rng.normal(0, 1e4, n),
        'pgout': pgout,
        'ppgout': pgout * 1.5 + rng.normal(0, 0.05, n),
        'pgfree': pgfree,
        'pgscan': pgfree * 1.2 + rng.normal(0, 0.1, n),
        'atch': rng.gamma(1.0, 1.0, n),
        'pgin': pgin,
        'ppgin': pgin * 1.4 + rng.normal(0, 0.1, n),
        'pflt': pflt,
        'vflt': pflt * 1.5 + rng.normal(0, 1, n),
        'runqsz': runqsz,
        'freemem': freemem,
        'freeswap': freeswap,
    })

    active_usr = (
        95.0 - 4.0 * runqsz - 0.002 * scall - 0.05 * pflt + rng.normal(0, 1.5, n)
    )
    inactive_usr = rng.uniform(0, 2, n)
    frame['usr'] = np.clip(np.where(freeswap < 6e5, inactive_usr, active_usr), 0, 100)

    return frame[COLUMNS]


@pytest.fixture
def cpu_frame():
    """600-row synthetic table."""
    return make_cpu_frame()


@pytest.fixture
def small_config():
    """Configuration scaled down for fast tests."""
    return {
        'data': {'target': 'usr', 'expected_columns': 22},
        'split': {'train_fraction': 2 / 3, 'seed': 12345},
        'cleaning': {'n_redundant': 6, 'selected_features': ['runqsz', 'freeswap']},
        'activity': {'threshold': 2.0},
        'pca': {'n_components': 3},
        'classification': {'n_folds': 3, 'knn_max_k': 5, 'mlp_hidden': 5, 'max_iter': 200},
        'regression': {
            'n_folds': 3,
            'inner_folds': 3,
            'candidates': ['ols_stepwise', 'glm', 'ridge', 'lasso', 'mlp', 'rbf'],
            'glm_links': ['logit', 'probit', 'cloglog'],
            'max_iter': 200,
        },
        'evaluation': {'confidence_level': 0.95},
    }
