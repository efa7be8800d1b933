"""Exception taxonomy of the lead pipeline.

``NonRetriableError`` marks failures the job queue must not retry: a retry
cannot change the outcome (timeouts already waited out, missing entities,
business-rule refusals). Everything else is treated as transient.
"""


class NonRetriableError(Exception):
    """Failure that stops job retries immediately."""

    pass


class PipelineError(Exception):
    """Base exception for pipeline stage errors."""

    pass


class EntityNotFoundError(PipelineError, NonRetriableError):
    """Raised when a job references a row that does not exist."""

    pass


class DiscoveryTimeoutError(PipelineError, NonRetriableError):
    """Raised when a webset is still running after the poll ceiling."""

    pass


class DiscoveryFailedError(PipelineError, NonRetriableError):
    """Raised when the discovery provider reports the webset as failed."""

    pass


class RoutingDecisionError(PipelineError):
    """Raised when the routing answer is not an allowed action."""

    pass


class AttachmentError(PipelineError, NonRetriableError):
    """Raised when a lead cannot be bound to a campaign."""

    pass


class CampaignCreationError(PipelineError):
    """Raised when a campaign cannot be generated or registered."""

    pass


class LeadActionError(PipelineError, NonRetriableError):
    """Raised when a manual lead action is refused for the lead's state."""

    pass
