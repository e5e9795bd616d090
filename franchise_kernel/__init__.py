"""
Franchise Kernel

Shared infrastructure for the franchise billing core:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- SQLAlchemy declarative bases and engine/session management
- Injectable clocks
- Locked-counter sequence allocation
"""

__version__ = "0.1.0"
