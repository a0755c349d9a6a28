"""
Error taxonomy.

Routes translate these into HTTPException; the ingestion path catches them
per play so one bad record never aborts its batch.
"""


class SoundLinkError(Exception):
    """Base class for every domain error."""


class NotFound(SoundLinkError):
    pass


class CampaignNotFound(NotFound):
    def __init__(self, campaign_id):
        super().__init__(f"Campaign {campaign_id} not found")
        self.campaign_id = campaign_id


class ClickNotFound(NotFound):
    def __init__(self, click_id: str):
        super().__init__(f"Click {click_id} not found")
        self.click_id = click_id


class Expired(SoundLinkError):
    pass


class CampaignExpired(Expired):
    def __init__(self, campaign_id):
        super().__init__(f"Campaign {campaign_id} has expired")
        self.campaign_id = campaign_id


class ProviderUnavailable(SoundLinkError):
    """The provider failed after the retry budget and no cached data exists."""


class ConstraintViolation(SoundLinkError):
    """A uniqueness conflict whose winning row could not be read back."""


class ConfigurationError(SoundLinkError):
    """Missing external credentials. Raised at startup only."""


class AttributionWriteError(SoundLinkError):
    def __init__(self, play_id: int, cause: Exception):
        super().__init__(f"Attribution insert failed for play {play_id}: {cause}")
        self.play_id = play_id
        self.cause = cause


class AggregationError(SoundLinkError):
    """A query row did not match its expected record shape."""
