"""
Financing Kernel

Shared infrastructure for the invoice financing workflow engine:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- SQLAlchemy base classes, engine and session scope
- Domain value types (clock, actor, workflow definitions, domain events)
"""

__version__ = "0.1.0"
