from __future__ import annotations


class ApplicationStatus:
    S1_DRAFT = "S1_DRAFT"
    S2_SUBMITTED = "S2_SUBMITTED"
    S3_IN_REVIEW = "S3_IN_REVIEW"
    S4_RETURNED = "S4_RETURNED"
    S5_TECH_VALIDATED = "S5_TECH_VALIDATED"
    S6_READY_FOR_PRESIDENT = "S6_READY_FOR_PRESIDENT"
    S8_SENT_TO_MEETING = "S8_SENT_TO_MEETING"
    S9_DELIBERATED = "S9_DELIBERATED"
    S10_AWAITING_EXPENSE = "S10_AWAITING_EXPENSE"
    S15_CLOSED = "S15_CLOSED"

    ALL = (
        S1_DRAFT,
        S2_SUBMITTED,
        S3_IN_REVIEW,
        S4_RETURNED,
        S5_TECH_VALIDATED,
        S6_READY_FOR_PRESIDENT,
        S8_SENT_TO_MEETING,
        S9_DELIBERATED,
        S10_AWAITING_EXPENSE,
        S15_CLOSED,
    )

    # Core fields (category, title, amount) and candidacy documents may only
    # change while the application is still with the entity or under review.
    EDITABLE = frozenset({S1_DRAFT, S2_SUBMITTED, S3_IN_REVIEW, S4_RETURNED})


class DocumentStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    DECISIONS = frozenset({APPROVED, REJECTED})


class Role:
    ADMIN = "ADMIN"
    TECH = "TECH"
    VALIDATOR = "VALIDATOR"
    PRESIDENT = "PRESIDENT"
    ENTITY = "ENTITY"

    ALL = frozenset({ADMIN, TECH, VALIDATOR, PRESIDENT, ENTITY})


class PresidentDecisionKind:
    APPROVE_TO_PROCEED = "APPROVE_TO_PROCEED"
    RETURN_FOR_CORRECTION = "RETURN_FOR_CORRECTION"

    ALL = frozenset({APPROVE_TO_PROCEED, RETURN_FOR_CORRECTION})


class DeliberationOutcome:
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    ALL = frozenset({APPROVED, REJECTED})


class ApplicationOrigin:
    SPONTANEOUS = "SPONTANEOUS"
