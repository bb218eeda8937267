"""
Bot-wide constants and default values.
"""

# ── Bot Identity ─────────────────────────────────────────────────────
BOT_NAME = "Soundboard"
BOT_COLOR = 0x1ABC9C  # Teal theme
BOT_ERROR_COLOR = 0xE74C3C  # Red
BOT_SUCCESS_COLOR = 0x2ECC71  # Green
BOT_INFO_COLOR = 0x3498DB  # Blue
BOT_WARN_COLOR = 0xF39C12  # Orange

# ── Discord limits ───────────────────────────────────────────────────
MAX_MESSAGE_LENGTH = 2000
MAX_EMBED_DESC = 4096
MAX_AUTOCOMPLETE_CHOICES = 25

# ── Channels ─────────────────────────────────────────────────────────
DEFAULT_SOUNDS_CHANNEL = "sounds"
DEFAULT_COMMANDS_CHANNEL = "bot-commands"
HYGIENE_DELETE_DELAY = 3.0  # seconds before a text-only post in #sounds is removed

# ── Sound index ──────────────────────────────────────────────────────
PAGE_SIZE = 100  # Discord history page ceiling
SOUND_EXTENSION = ".mp3"
REBUILD_INTERVAL_HOURS = 4.0

# ── Tags ─────────────────────────────────────────────────────────────
TAG_ENTRANCE = "e"
TAG_VOLUME = "v"

# ── Volume ───────────────────────────────────────────────────────────
VOLUME_UNSPECIFIED = 0
UNITY_VOLUME = 256  # 100 %
MAX_VOLUME = 512    # 200 %

# ── Playback ─────────────────────────────────────────────────────────
FRAME_INTERVAL = 0.02       # 20 ms Opus frame
STOP_SETTLE_DELAY = 0.1     # pause after cancellation to avoid a clipped frame
ENTRANCE_DELAY = 1.0        # let Discord's own join chime finish
VOICE_JOIN_TIMEOUT = 10.0   # seconds before giving up on a voice session
VOICE_READY_POLL = 0.05     # seconds between readiness checks
OPUS_BITRATE_KBPS = 64

FFMPEG_BEFORE_OPTIONS = "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5"

# ── API ──────────────────────────────────────────────────────────────
API_TIMEOUT = 30  # seconds
API_MAX_RETRIES = 3
API_RETRY_BASE_DELAY = 1.0  # seconds, exponential backoff base
MAX_SOUND_SIZE = 10 * 1024 * 1024  # bytes accepted when re-uploading a clip

# ── Branding (user-facing) ───────────────────────────────────────────
BRAND = "Soundboard \U0001f50a"
