# Loan application module
from app.modules.loans.models import (
    LoanApplication, ApplicationStatus, Decision, EmploymentStatus
)
from app.modules.loans.decision import DecisionEngine, DecisionResult
from app.modules.loans.services import ApplicationStateMachine
from app.modules.loans.router import router

__all__ = [
    "LoanApplication", "ApplicationStatus", "Decision", "EmploymentStatus",
    "DecisionEngine", "DecisionResult", "ApplicationStateMachine", "router"
]
