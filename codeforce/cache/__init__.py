# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Disk-backed response cache (`cache_base` owns the store, `cache_responses` the facade)."""

from .cache_base import BaseCacheStats, BaseDiskCache
from .cache_responses import CacheLookupResult, ResponseCache

__all__ = ["BaseCacheStats", "BaseDiskCache", "CacheLookupResult", "ResponseCache"]
