"""
Control assurance.

Components:
- schemas: Enums, calculator inputs/outputs, write payloads
- library: Immutable control template catalogue
- instances: Control instances, attestations, evidence requests
- dime: Design/Implementation/Monitoring/Evaluation scoring
- confidence: 0-100 evidence confidence scoring
- recompute: Synchronous derived-score refresh after writes
"""
