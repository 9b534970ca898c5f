# replication/signer.py
"""
Request signatures.

The digest input must match what the receiving side computes byte for byte,
and the receiving side may not be Python. The structure is serialized the way
a WordPress-side json_encode does it: compact separators, non-ASCII as \\uXXXX, and
forward slashes escaped as "\\/".
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict

from replication.constants import DEFAULT_SIGNATURE_ALGO
from replication.errors import ConfigurationError


def canonical_json(value: Any) -> str:
    """Compact, ASCII-only JSON with escaped forward slashes."""
    text = json.dumps(value, ensure_ascii=True, separators=(",", ":"))
    return text.replace("/", "\\/")


def signature_payload(api_key: str, method: str, uri: str, timestamp: int) -> Dict[str, Any]:
    # Key order is part of the contract.
    return {
        "api_key": api_key,
        "request_method": method.upper(),
        "request_post": [],
        "request_uri": uri,
        "timestamp": int(timestamp),
    }


def sign(
    method: str,
    uri: str,
    timestamp: int,
    secret: str,
    *,
    api_key: str,
    algorithm: str = DEFAULT_SIGNATURE_ALGO,
) -> str:
    """
    Hex digest of canonical_json(payload) + secret.

    `uri` is the full request URI including its query string.
    """
    try:
        digest = hashlib.new(algorithm)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Unsupported signature algorithm {algorithm!r}") from e

    message = canonical_json(signature_payload(api_key, method, uri, timestamp)) + secret
    digest.update(message.encode("utf-8"))
    return digest.hexdigest()
