"""
Workflow Kernel

Foundation layer of the matter workflow engine:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Injectable clock
- Pure domain types and the step state machine guard
- SQLAlchemy base, engine and ORM models
"""

__version__ = "0.1.0"
