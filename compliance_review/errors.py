"""Exception types raised by the review pipeline."""


class ComplianceReviewError(Exception):
    """Base class for every error raised by this package."""


class ContractInputError(ComplianceReviewError, ValueError):
    """The contract text (or the file holding it) is missing or empty."""


class RulebookError(ComplianceReviewError):
    """The rule tables or reference corpus cannot be used.

    Raised at load time. A broken rulebook must stop the process: skipping
    a rule silently would hide violations.
    """


class RetrievalError(ComplianceReviewError):
    """An embedding provider or vector index call failed."""
