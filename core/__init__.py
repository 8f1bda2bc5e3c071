"""Core module - ambient stack for the reconciliation engine.

Configuration, structured logging, stage timing metrics and the audit
trail. Reconciliation domain logic belongs in /reconciliation/.
"""

__version__ = "1.0.0"
