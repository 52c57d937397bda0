"""
Default configuration values for indexsync.

Centralized defaults that can be overridden by a JSON config file or
environment variables.
"""

import copy
from typing import Any, Dict

# Global default settings
DEFAULT_SETTINGS = {
    "index": "shindig",

    # Index connection and batching
    "connector": {
        "kind": "bulking",
        "qdrant": {
            "url": "http://localhost:6333",
            "location": None,
            "api_key": None,
            "timeout": 60.0,
            "scroll_batch_size": 256
        },
        "bulking": {
            "actions": 1000,
            "megabytes": 5.0,
            "seconds": 5.0
        }
    },

    # Entity kinds
    "profiles": {"enabled": True, "doc_type": "person"},
    "activities": {"enabled": True, "doc_type": "activity"},
    "messages": {"enabled": True, "doc_type": "message"},

    # Full crawl schedule
    "crawl": {
        "enabled": True,
        "mode": "daily",
        "hour": 2,
        "day": 0,
        "clear_every_n_passes": 0,
        "clear_on_start": False,
        "crawl_on_start": True
    },

    # Mapping auto-load
    "mapping": {
        "load": False,
        "types": ["person", "activity", "message"],
        "file": None
    },

    # Incremental synchronization
    "handle_events": True,
    "skills_enabled": True,
    "add_friends": False
}

# Environment variable to dotted config path
ENV_VAR_MAPPING = {
    'INDEXSYNC_INDEX': 'index',
    'INDEXSYNC_CONNECTOR': 'connector.kind',
    'INDEXSYNC_QDRANT_URL': 'connector.qdrant.url',
    'INDEXSYNC_QDRANT_LOCATION': 'connector.qdrant.location',
    'INDEXSYNC_QDRANT_API_KEY': 'connector.qdrant.api_key',
    'INDEXSYNC_QDRANT_TIMEOUT': 'connector.qdrant.timeout',
    'INDEXSYNC_BULK_ACTIONS': 'connector.bulking.actions',
    'INDEXSYNC_BULK_MEGABYTES': 'connector.bulking.megabytes',
    'INDEXSYNC_BULK_SECONDS': 'connector.bulking.seconds',
    'INDEXSYNC_PROFILES_ENABLED': 'profiles.enabled',
    'INDEXSYNC_ACTIVITIES_ENABLED': 'activities.enabled',
    'INDEXSYNC_MESSAGES_ENABLED': 'messages.enabled',
    'INDEXSYNC_CRAWL_ENABLED': 'crawl.enabled',
    'INDEXSYNC_CRAWL_MODE': 'crawl.mode',
    'INDEXSYNC_CRAWL_HOUR': 'crawl.hour',
    'INDEXSYNC_CRAWL_DAY': 'crawl.day',
    'INDEXSYNC_CLEAR_INTERVAL': 'crawl.clear_every_n_passes',
    'INDEXSYNC_CLEAR_ON_START': 'crawl.clear_on_start',
    'INDEXSYNC_CRAWL_ON_START': 'crawl.crawl_on_start',
    'INDEXSYNC_LOAD_MAPPING': 'mapping.load',
    'INDEXSYNC_MAPPING_TYPES': 'mapping.types',
    'INDEXSYNC_MAPPING_FILE': 'mapping.file',
    'INDEXSYNC_HANDLE_EVENTS': 'handle_events',
    'INDEXSYNC_SKILLS_ENABLED': 'skills_enabled',
    'INDEXSYNC_ADD_FRIENDS': 'add_friends'
}

# Values that must stay strings even when they look numeric
STRING_PATHS = {
    'index',
    'connector.qdrant.api_key',
    'connector.qdrant.location',
    'mapping.types',
    'mapping.file'
}


def get_default_config() -> Dict[str, Any]:
    """Get a mutable copy of the default configuration"""
    return copy.deepcopy(DEFAULT_SETTINGS)
