# sway_ide/__init__.py

__version__ = "0.2.0"

from .config import deep_merge, load_config, setup_logging
from .editor import SwayIde
from .folding import FoldRange, FoldState, compute_fold_ranges
from .lsp_client import LspClient

__all__ = [
    'SwayIde',
    'FoldRange',
    'FoldState',
    'compute_fold_ranges',
    'LspClient',
    'deep_merge',
    'load_config',
    'setup_logging',
]
