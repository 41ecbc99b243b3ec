from .quote_item_repository import QuoteItemRepository
from .quote_repository import QuoteRepository
from .status_event_repository import StatusEventRepository
from .user_profile_repository import UserProfileRepository

__all__ = [
    "QuoteItemRepository",
    "QuoteRepository",
    "StatusEventRepository",
    "UserProfileRepository",
]
