"""BookBase - Services Package

This package contains service modules for outside systems:
- Email delivery over SMTP
- Image storage (object storage REST API or local disk)
- HTTP client abstraction
"""
