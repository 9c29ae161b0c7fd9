"""
Core Constants for ordrfm

Central place for format tables, keyword sets and tuning defaults.
"""

# Audio formats
LOSSLESS_FORMATS = frozenset({'flac', 'wav', 'aiff', 'aif', 'alac', 'ape', 'wv'})
LOSSY_FORMATS = frozenset({'mp3', 'aac', 'm4a', 'ogg', 'opus', 'wma'})
AUDIO_FORMATS = LOSSLESS_FORMATS | LOSSY_FORMATS

# Metadata confidence
LOCAL_CONFIDENCE_BASELINE = 0.3
DEFAULT_CONFIDENCE_THRESHOLD = 0.7

# Match scoring (title > artist > year > label)
DEFAULT_SCORING_WEIGHTS = {
    'title': 0.4,
    'artist': 0.3,
    'year': 0.2,
    'label': 0.1,
}
EXACT_MATCH_SCORE = 1.0
CONTAINS_MATCH_SCORE = 0.7
TOKEN_OVERLAP_FACTOR = 0.5
YEAR_TOLERANCE = 2
YEAR_NEAR_SCORE = 0.5

# Organization rules
DEFAULT_MIN_LABEL_RELEASES = 3
LABEL_DOMINANCE_FACTOR = 2
SMALL_ARTIST_MAX_RELEASES = 2
PROLIFIC_LABEL_MIN_RELEASES = 5
MAX_TITLE_LENGTH = 100
MAX_PATTERN_INPUT_LENGTH = 256

VARIOUS_ARTISTS_ALIASES = ['Various Artists', 'Various', 'VA', 'V.A.', 'Compilation']
PLACEHOLDER_ARTISTS = ['', 'unknown', 'unknown artist', '[unknown]', 'artist', 'n/a']
UNDERGROUND_KEYWORDS = ['white label', 'white', 'promo', 'bootleg', 'unreleased',
                        'dubplate', 'test press']
REMIX_KEYWORDS = ['remixes', 'remix', 'rmx', 'rework', 'edit', 'dub', 'mix',
                  'bootleg', 'refix', 'flip']
COMPILATION_KEYWORDS = ['compilation', 'sampler', 'collection', 'anthology',
                        'best of', 'greatest hits', 'selected works']

# Performance & Threading
DEFAULT_WORKER_THREADS = 4
MAX_WORKER_THREADS = 16
PROGRESS_UPDATE_INTERVAL = 10   # Albums processed between batch snapshots
JOB_HISTORY_SIZE = 50

# Rate limiting
DISCOGS_RATE_PER_SECOND = 1.0
DISCOGS_BUCKET_SIZE = 5
MUSICBRAINZ_RATE_PER_SECOND = 1.0
MUSICBRAINZ_BUCKET_SIZE = 1
RATE_LIMIT_MAX_WAIT_SLICE = 0.25  # Upper bound for a single blocking wait

# Network
API_TIMEOUT = 10.0
API_RESULTS_PER_PAGE = 10
USER_AGENT = 'ordrfm/1.0 +https://github.com/ordrfm/ordrfm'

# Database Configuration
DB_TIMEOUT = 30.0               # Database timeout in seconds
METADATA_CACHE_TTL_HOURS = 24

# Filesystem
EMPTY_DIR_CLEANUP_DEPTH = 3
TEMP_FILE_PREFIX = '.ordrfm-tmp-'
