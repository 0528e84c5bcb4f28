"""
riskgov — Control Assurance & Tolerance Breach Engine.

Architecture:
    controls/   — Control template library, instances, attestations,
                  DIME and confidence scoring
    tolerance/  — Tolerance metrics, measurements, band classification,
                  breach detection and lifecycle
    risks/      — Risk responses and the activation gate
    services/   — AssuranceService facade, audit log, scheduled sweeps
    db/         — Async SQLAlchemy engine, models, repositories
    auth/       — Roles, permissions, caller context
    api/        — Thin FastAPI surface over the service facade
"""

__version__ = "1.0.0"
