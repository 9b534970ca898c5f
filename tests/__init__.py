"""
Tests package for Replicast

This package contains all unit and integration tests.

Test organization:
- test_identity_map.py, test_resolver.py, test_signer.py: engine building blocks
- test_handlers.py, test_orchestrator.py: per-destination protocol and event flow
- test_fields.py, test_json_host.py: the host side of the composite field
- test_http.py, test_config.py, test_status_monitor.py, test_cli.py: ambient plumbing
- conftest.py: Shared fixtures and test utilities
"""

__version__ = "1.0.0"
