"""
MEI Ledger - Source Package

Ledger-consistency and due-date alerting core for a personal / MEI
finance tracker.

DESIGN PRINCIPLES:
1. The ledger is the source of truth for money movements
2. A derived record (DAS obligation, sale) never outlives its entry
3. Fail visibly: errors become results, inconsistencies are reported
4. Every write must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "MEI Ledger Team"
