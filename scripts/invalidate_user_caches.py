#!/usr/bin/env python3
"""
Drop every cached style, resume and mapping analysis for one user in Redis.

Usage:
  PYTHONPATH=. REDIS_URL=<your-redis-url> \
    python3 scripts/invalidate_user_caches.py <user_id>
"""

import os
import sys

from libs.core.cache_registry import default_cache_registry
from libs.core.cache_store import RedisCacheStore
from libs.core.domain_cache import build_domain_caches, invalidate_user_caches, user_cache_stats
from libs.core.record_store import InMemoryDocumentProvider

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")


def main(argv: list[str]) -> int:
    if len(argv) != 2 or not argv[1].isdigit():
        print("Usage: invalidate_user_caches.py <user_id>")
        return 2
    user_id = int(argv[1])
    store = RedisCacheStore.from_url(REDIS_URL)
    caches = build_domain_caches(store, InMemoryDocumentProvider(), default_cache_registry())

    print(f"Cached entries before: {user_cache_stats(caches, user_id)}")
    removed = invalidate_user_caches(caches, user_id)
    print(f"Removed {removed} entries for user {user_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
