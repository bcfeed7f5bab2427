"""
Call state reconciliation.

Key components:
- state_machine: The pure ``advance(record, event)`` function and its transition
  table. Terminal statuses are sticky.
- service: CallReconciler, which resolves events to records, persists the result
  of ``advance`` and drives the provider calls around it.
"""
