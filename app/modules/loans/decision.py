"""
Deterministic credit policy.

Computes a score in [300, 850], a decision, an approved amount, an APR and an
ordered list of reason codes from the application attributes and, when
available, the CRM customer flags.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, List, Optional

from app.integrations.crm import CustomerFlags
from app.modules.loans.models import Decision, EmploymentStatus

MIN_SCORE = 300
MAX_SCORE = 850
BASE_SCORE = 600

APPROVAL_THRESHOLD = 700
REJECTION_THRESHOLD = 600

MIN_AGE = 18
MAX_AGE = 70

DTI_LIMIT = Decimal("0.5")
DTI_PENALTY = 120

HIGH_INCOME_THRESHOLD = Decimal("2500")
HIGH_INCOME_BONUS = 60
LOW_INCOME_THRESHOLD = Decimal("500")
LOW_INCOME_PENALTY = 40

PAYMENT_BURDEN_LIMIT = Decimal("0.4")
PAYMENT_BURDEN_PENALTY = 50

DEFAULT_HISTORY_PENALTY = 80
EXISTING_CUSTOMER_BONUS = 20

# APR runs linearly from MAX_APR at MIN_SCORE down to MIN_APR at MAX_SCORE
MAX_APR = Decimal("36.00")
MIN_APR = Decimal("12.00")

EMPLOYMENT_ADJUSTMENTS = {
    EmploymentStatus.EMPLOYED: (60, "EMPLOYMENT_STABLE"),
    EmploymentStatus.SELF_EMPLOYED: (20, "EMPLOYMENT_SELF"),
    EmploymentStatus.RETIRED: (10, "EMPLOYMENT_RETIRED"),
    EmploymentStatus.STUDENT: (-30, "EMPLOYMENT_LIMITED"),
    EmploymentStatus.UNEMPLOYED: (-100, "EMPLOYMENT_RISK"),
}

CENT = Decimal("0.01")


@dataclass
class DecisionResult:
    score: int
    decision: Decision
    approved_amount: Decimal
    apr: Optional[Decimal]
    reason_codes: List[str] = field(default_factory=list)


def calculate_age(date_of_birth: date, today: date) -> int:
    """Whole years between ``date_of_birth`` and ``today``"""
    return today.year - date_of_birth.year - (
        (today.month, today.day) < (date_of_birth.month, date_of_birth.day)
    )


def apr_for_score(score: int) -> Decimal:
    """Annual rate for a score; never increases as the score increases"""
    score = min(max(score, MIN_SCORE), MAX_SCORE)
    span = Decimal(MAX_SCORE - MIN_SCORE)
    apr = MAX_APR - (MAX_APR - MIN_APR) * Decimal(score - MIN_SCORE) / span
    return apr.quantize(CENT, rounding=ROUND_HALF_UP)


def estimate_installment(principal: Decimal, term_months: int, annual_rate: Decimal) -> Decimal:
    """Level monthly payment of an amortizing loan"""
    if term_months <= 0:
        return principal
    monthly_rate = annual_rate / Decimal(1200)
    if monthly_rate == 0:
        return principal / Decimal(term_months)
    factor = (1 + monthly_rate) ** term_months
    return principal * monthly_rate * factor / (factor - 1)


class DecisionEngine:
    """Scores loan applications against the credit policy"""

    def __init__(self, today: Optional[Callable[[], date]] = None):
        self._today = today or date.today

    def evaluate(self, application, flags: Optional[CustomerFlags] = None) -> DecisionResult:
        """Evaluate an application.

        ``application`` needs ``date_of_birth``, ``employment_status``,
        ``monthly_income``, ``existing_monthly_debt``, ``requested_amount``
        and ``term_months``.
        """
        age = calculate_age(application.date_of_birth, self._today())
        if age < MIN_AGE or age > MAX_AGE:
            return self._hard_reject("AGE_OUT_OF_RANGE")

        income = Decimal(application.monthly_income or 0)
        if income <= 0:
            return self._hard_reject("NO_INCOME")

        debt = Decimal(application.existing_monthly_debt or 0)
        score = BASE_SCORE
        reasons: List[str] = []

        dti = debt / income
        if dti > DTI_LIMIT:
            score -= DTI_PENALTY
            reasons.append("DTI_EXCESSIVE")
        else:
            reasons.append("DTI_OK")

        adjustment, reason = EMPLOYMENT_ADJUSTMENTS[EmploymentStatus(application.employment_status)]
        score += adjustment
        reasons.append(reason)

        if income > HIGH_INCOME_THRESHOLD:
            score += HIGH_INCOME_BONUS
            reasons.append("INCOME_HIGH")
        elif income < LOW_INCOME_THRESHOLD:
            score -= LOW_INCOME_PENALTY
            reasons.append("INCOME_LOW")

        requested = application.requested_amount
        if requested is not None and application.term_months:
            installment = estimate_installment(Decimal(requested), application.term_months, MAX_APR)
            if installment / income > PAYMENT_BURDEN_LIMIT:
                score -= PAYMENT_BURDEN_PENALTY
                reasons.append("PAYMENT_BURDEN_HIGH")

        if flags is not None:
            if flags.has_default_history:
                score -= DEFAULT_HISTORY_PENALTY
                reasons.append("CRM_DEFAULT_HISTORY")
            elif flags.existing_customer and not flags.has_active_loans:
                score += EXISTING_CUSTOMER_BONUS
                reasons.append("EXISTING_CUSTOMER")

        score = min(max(score, MIN_SCORE), MAX_SCORE)

        if score >= APPROVAL_THRESHOLD:
            decision = Decision.APPROVED
        elif score < REJECTION_THRESHOLD:
            decision = Decision.REJECTED
        else:
            decision = Decision.MANUAL_REVIEW

        if decision == Decision.REJECTED:
            return DecisionResult(score, decision, Decimal("0.00"), None, reasons)

        return DecisionResult(
            score=score,
            decision=decision,
            approved_amount=self._approved_amount(score, income, requested),
            apr=apr_for_score(score),
            reason_codes=reasons
        )

    @staticmethod
    def _approved_amount(score: int, income: Decimal, requested) -> Decimal:
        if score >= 800:
            multiple = 12
        elif score >= APPROVAL_THRESHOLD:
            multiple = 8
        else:
            multiple = 4
        cap = income * multiple
        amount = cap if requested is None else min(Decimal(requested), cap)
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)

    @staticmethod
    def _hard_reject(reason: str) -> DecisionResult:
        return DecisionResult(MIN_SCORE, Decision.REJECTED, Decimal("0.00"), None, [reason])
