"""
Intake Ledger - Personal health-event ledger and synchronization engine.

Records fluid/sodium intake, weight, blood pressure and eating/urination
events, answers rolling-window and logical-day totals, and keeps an embedded
local store and a remote relational store interchangeable behind one router.
"""

__version__ = "0.1.0"
