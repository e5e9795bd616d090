"""
Franchise Modules.

Thin orchestration layers over the Franchise Kernel and Engines.
Each module contains:
- Domain models (the nouns)
- ORM models (persistence)
- Workflows (state machines)
- Configuration schemas (policy and settings)
- A service that owns the transaction boundary

Modules:
- Obligations: royalty, revenue and transaction records, payments,
  late fees, disputes and refunds
"""

from franchise_modules import obligations

__all__ = ["obligations"]
