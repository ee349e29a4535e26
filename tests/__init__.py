"""
CloudOnboard test suite.

This package contains all tests for CloudOnboard, organized into:
    - unit/: Unit tests with mocked dependencies

Test Organization:
    - tests/unit/test_*.py: Unit tests for individual modules
    - tests/conftest.py: Shared fixtures (fake clock, control plane mocks,
      sample accounts and GraphQL payloads)
"""
