"""
Tolerance monitoring.

Components:
- schemas: Metric types, bands, trend config, escalation rules, breach models
- metrics: Tolerance metric store, measurement series, measurements
- classifier: Green/amber/red classification per metric type
- breaches: Idempotent breach detection with escalation chains
- lifecycle: Breach state machine, remediation, board-accepted exceptions
"""
