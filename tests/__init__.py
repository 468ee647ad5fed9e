"""
Test suite for mtd-sync.

This package contains:
- Unit tests for the codec, hasher, mapping store and state migration
- Gateway and auth tests with mocked HTTP sessions
- Engine and command tests against an in-memory remote service
"""
