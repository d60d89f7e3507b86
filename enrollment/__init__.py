"""Enrollment package for the workshop registration service."""

from . import data_loader
from .eligibility import EligibilityGate
from .engine import can_enroll, enroll
from .models import Candidate, CapacityRules, EnrollmentStats, MultiSessionState, Participant, Session, SessionState
from .service import EnrollmentResult, EnrollmentService, create_service

__all__ = [
    "data_loader",
    "EligibilityGate",
    "can_enroll",
    "enroll",
    "Candidate",
    "CapacityRules",
    "EnrollmentStats",
    "MultiSessionState",
    "Participant",
    "Session",
    "SessionState",
    "EnrollmentResult",
    "EnrollmentService",
    "create_service",
]
