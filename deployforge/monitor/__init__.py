"""Run monitor — read-only projection over the Run Ledger.

Modules
-------
projection
    ``RunProjection`` reads the ledger and produces a frozen
    ``RunSnapshot`` of one pipeline run.
renderer
    ``MonitorRenderer`` turns snapshots and service records into Rich
    renderables for terminal display.
"""
