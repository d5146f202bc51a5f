from gist.models.feed import Feed
from gist.models.entry import Entry

__all__ = [
    "Feed",
    "Entry",
]
