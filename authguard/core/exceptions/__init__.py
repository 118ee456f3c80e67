"""
Exception Module

Structured exception hierarchy for authguard.

Module Structure:
-----------------
- **base.py**: AuthGuardError base class + ConfigurationError
- **cache.py**: Shared cache / connection pool exceptions

Usage:
------
```python
from authguard.core.exceptions import CacheUnavailableError, ConfigurationError
```

Author: System Architect
Date: 2025-12-08
"""

from authguard.core.exceptions.base import AuthGuardError, ConfigurationError
from authguard.core.exceptions.cache import (
    CacheError,
    CacheOperationError,
    CacheUnavailableError,
)

__all__ = [
    "AuthGuardError",
    "ConfigurationError",
    "CacheError",
    "CacheUnavailableError",
    "CacheOperationError",
]
