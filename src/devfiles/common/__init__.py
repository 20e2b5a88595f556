"""
Shared infrastructure for devfiles.

Provides:
- exceptions: typed error hierarchy and classification
- logging: formatters, setup and structured logging helpers
- concurrency: completion token and fail-fast join
- security: URL/message sanitization for logs
"""
