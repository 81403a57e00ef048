"""Error kinds raised by the path analysis engine."""


class PathAnalysisError(Exception):
    """Base class for path analysis failures."""


class ProjectNotFoundError(PathAnalysisError, LookupError):
    """Raised when an analysis project id does not resolve."""

    def __init__(self, project_id):
        super().__init__(f"Analysis project not found: {project_id}")
        self.project_id = project_id


class CampaignNotFoundError(PathAnalysisError, LookupError):
    """Raised when a campaign id does not resolve."""

    def __init__(self, campaign_id):
        super().__init__(f"Campaign not found: {campaign_id}")
        self.campaign_id = campaign_id


class InvalidInputError(PathAnalysisError, ValueError):
    """Raised for malformed arguments at a collaborator boundary."""
