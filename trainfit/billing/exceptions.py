"""Billing domain errors. Routes translate these into HTTP responses."""


class BillingError(Exception):
    """Base class for billing errors that must not mutate the ledger."""


class UnknownProcessorStatusError(BillingError):
    """A processor subscription status outside the known vocabulary."""

    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"Unrecognized processor subscription status: {status!r}")


class UnmappedPaymentStatusError(BillingError):
    """A manual-edit payment status outside {paid, succeeded, pending, overdue}."""

    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(
            f"Unknown payment status {status!r}. Use one of: paid, succeeded, pending, overdue."
        )


class UnknownPlanError(BillingError):
    def __init__(self, plan: str) -> None:
        self.plan = plan
        super().__init__(f"Unknown plan {plan!r}. Use one of: BASIC, PREMIUM, PROFESSIONAL.")


class InvalidBillingPeriodError(BillingError):
    """Billing period whose end falls before its start."""
