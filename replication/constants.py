# replication/constants.py

"""
Reserved names shared by the sending and receiving side.

These are wire-level names: another instance on the other end of the
HTTP call reads and writes the exact same keys.
"""

from typing import List

# Taxonomy used by the host to assign an entity to destinations ("sites")
TAXONOMY_SITE = "remote_site"

# Marker header on every outbound request (and on internal projections)
REPLICAST_REQUEST_HEADER = "X-WP-Replicast"

# Metadata key holding the Replica Set of an entity
REPLICAST_REMOTE_INFO = "_replicast_remote_info"

# Metadata key describing where a replicated entity came from
REPLICAST_SOURCE_INFO = "_replicast_source_info"

# Metadata key exposing a local entity's own address to the other side
REPLICAST_OBJECT_INFO = "_replicast_object_info"

# Metadata key holding received translation links
REPLICAST_TRANSLATIONS = "_replicast_translations"

# Name of the composite field in the serialized entity
REPLICAST_FIELD = "replicast"

# REST structures removed before a payload leaves
DEFAULT_SUPPRESSED_STRUCTURES: List[str] = ["categories", "tags", "_links", "_embedded"]

# Protected meta keys that are still exposed on the read path
DEFAULT_EXPOSED_META: List[str] = ["_wp_page_template"]

# Default terms that never travel
DEFAULT_TERM_SLUGS = {"uncategorized", "untagged"}

# taxonomy -> REST resource base
TAXONOMY_REST_BASES = {
    "category": "categories",
    "post_tag": "tags",
}

# object type -> REST resource base
POST_TYPE_REST_BASES = {
    "post": "posts",
    "page": "pages",
    "attachment": "media",
}

DEFAULT_API_PATH = "wp-json/wp/v2"
DEFAULT_SIGNATURE_ALGO = "sha256"
DEFAULT_UPDATE_METHOD = "POST"
