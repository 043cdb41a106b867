"""
Expense Tracking System - API automation suites.

Layout:
  - api_testing/framework: HTTP client, token cache, correlation context,
    request logging and test-user cleanup
  - unit: harness unit tests (run against in-memory transports)
"""
