"""Exception types raised by the generation and patch engines."""


class DemoGenError(Exception):
    """Base class for demogen errors."""


class PlanValidationError(DemoGenError):
    """A plan failed validation before any mutation happened."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Validation failed: " + "; ".join(self.errors))


class PatchBlockedError(DemoGenError):
    """An additive patch would need to reduce a metric."""

    def __init__(self, blockers: list[str]):
        self.blockers = list(blockers)
        super().__init__("Patch blocked: " + "; ".join(self.blockers))


class TenantNotFoundError(DemoGenError):
    pass


class JobNotFoundError(DemoGenError):
    pass
