"""
Default values for markflow configuration.

Lowest layer of the configuration merge:
    built-in defaults < system config.yml < project config.yml < overrides

Every section a resolved configuration exposes is present here, so callers
never need to guess whether a key exists.
"""

from copy import deepcopy
from typing import Any, Dict

DEFAULT_USER = {
    "name": "Your Name",
    "preferred_name": "Your Name",
    "email": "your.email@example.com",
    "phone": "(555) 123-4567",
    "address": "",
    "city": "",
    "state": "",
    "zip": "",
    "linkedin": "",
    "github": "",
    "website": "",
}

DEFAULT_SYSTEM = {
    "scraper": "wget",
    "web_download": {
        "timeout": 30,
        "add_utf8_bom": True,
        "html_cleanup": "scripts",
    },
    "output_formats": ["docx", "html", "pdf"],
    "git": {
        "auto_commit": False,
        "commit_message_template": "Add {{ workflow }} collection: {{ collection_id }}",
    },
    "collection_id": {
        "date_format": "YYYYMMDD",
        "sanitize_spaces": "_",
        "max_length": 50,
    },
    "testing": {
        "override_current_date": None,
        "override_timezone": None,
        "deterministic_ids": False,
        "id_counter_start": 1,
    },
    "execution": {
        "max_concurrent": 3,
        "max_per_caller": 2,
        "operation_timeout": 120,
    },
    "mermaid": {
        "output_format": "png",
        "theme": "default",
        "timeout": 30,
    },
}

# Scrapers the engine knows how to drive
SUPPORTED_SCRAPERS = ("wget", "curl")


def get_default_config() -> Dict[str, Any]:
    """
    Get a fresh copy of the complete default configuration.

    Returns:
        Dict with user, system and workflows sections
    """
    return {
        "user": deepcopy(DEFAULT_USER),
        "system": deepcopy(DEFAULT_SYSTEM),
        "workflows": {},
    }
