"""kbsync_shared — Shared utilities for the S3 knowledge-base sync Lambda.

Provides:
    - Environment-sourced sync configuration
    - S3 object key decoding
    - Typed change-event / dataset / document records
    - Document store (knowledge-base API) HTTP client
    - S3 client factory and object source
    - Reconciliation of change events against the document store
    - Response and structured-logging helpers
"""

__version__ = "1.0.0"
