#!/usr/bin/env python3
"""
Cache Utilities
Locates the on-disk cache used for per-user liked-songs snapshots
"""

import os
from pathlib import Path

# backend/ sits next to the default cache directory
DEFAULT_CACHE_ROOT = Path(__file__).parent.parent / 'cache'


def get_cache_root():
    """
    Root of the on-disk cache, created if missing

    CACHE_DIR overrides the default <project_root>/cache/ (for example to
    point at a mounted persistent disk).
    """
    cache_root = Path(os.environ.get('CACHE_DIR') or DEFAULT_CACHE_ROOT)
    cache_root.mkdir(parents=True, exist_ok=True)
    return cache_root


def get_cache_dir(service_name):
    """Per-feature subdirectory of the cache root, e.g. 'liked_songs'"""
    cache_dir = get_cache_root() / service_name
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir
