"""
Shared utilities for the feature flags library.

This package aggregates common building blocks consumed by the flag
engine, stores, caches and channels:

- config: Library configuration via pydantic-settings
- logging: Structured logging via structlog
- metrics: Prometheus counters for cache and store behaviour
- errors: Canonical error types
- circuit_breaker: Protection for calls to flaky collaborators
- test_helpers: Test users, clocks and stores shared by the test suites

Only test_helpers may import from service_flags.
"""
