from utils.embedder import Embedder
from utils.rate_limiter import RateLimiter
from utils.file_handler import FileHandler
from utils.store import GuildStateStore
from utils.soundboard import Soundboard

__all__ = [
    "Embedder",
    "RateLimiter",
    "FileHandler",
    "GuildStateStore",
    "Soundboard",
]
