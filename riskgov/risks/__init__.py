"""
Risk treatment.

Components:
- schemas: Risk status, response types, activation decision
- activation: Activation gate, risk responses, governed status changes
"""
