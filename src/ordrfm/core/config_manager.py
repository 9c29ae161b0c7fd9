"""
Centralized Configuration Management

Manages all configuration sources:
- Default settings
- Project configs (config/*.json)
- User settings (~/.config/ordrfm/)
- CLI overrides
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, asdict, fields
import platform

from .constants import (
    DEFAULT_MIN_LABEL_RELEASES, DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_SCORING_WEIGHTS, DEFAULT_WORKER_THREADS, PROGRESS_UPDATE_INTERVAL,
    JOB_HISTORY_SIZE, METADATA_CACHE_TTL_HOURS, API_TIMEOUT, USER_AGENT,
    DISCOGS_RATE_PER_SECOND, DISCOGS_BUCKET_SIZE, MUSICBRAINZ_RATE_PER_SECOND,
    MUSICBRAINZ_BUCKET_SIZE, VARIOUS_ARTISTS_ALIASES, UNDERGROUND_KEYWORDS,
    REMIX_KEYWORDS, COMPILATION_KEYWORDS, PLACEHOLDER_ARTISTS, MAX_TITLE_LENGTH,
)
from .exceptions import ConfigurationError

ORGANIZATION_MODES = ('hybrid', 'artist', 'label', 'series')

DEFAULT_TEMPLATES = {
    'artist': '{quality}/{artist}/{artist} - {title}< ({year})>< [{label}]>< [{catalog}]>',
    'label': '{quality}/Labels/{label}/{artist} - {title}< [{catalog}]>',
    'series': '{quality}/Series/{series}/<{catalog} - >{artist} - {title}',
    'compilation': '{quality}/Various Artists/Various Artists - {title}< ({year})>< [{label}]>< [{catalog}]>',
    'underground': '{quality}/Underground/{underground_group}/{title}',
    'remix': '{quality}/Remixes/{remix_artist}/{title}',
}


@dataclass
class OrganizationConfig:
    """Destination layout and decision rule configuration"""
    destination_dir: str = "./organized"
    unsorted_dir: str = "./unsorted"
    organization_mode: str = "hybrid"
    enable_electronic: bool = True
    min_label_releases: int = DEFAULT_MIN_LABEL_RELEASES
    max_title_length: int = MAX_TITLE_LENGTH
    templates: Dict[str, str] = None
    series_patterns: List[str] = None
    various_artists_aliases: List[str] = None
    placeholder_artists: List[str] = None
    underground_keywords: List[str] = None
    remix_keywords: List[str] = None
    compilation_keywords: List[str] = None
    artist_aliases: Dict[str, List[str]] = None
    cleanup_empty_dirs: bool = True

    def __post_init__(self):
        if self.templates is None:
            self.templates = dict(DEFAULT_TEMPLATES)
        else:
            self.templates = {**DEFAULT_TEMPLATES, **self.templates}
        if self.series_patterns is None:
            self.series_patterns = []
        if self.various_artists_aliases is None:
            self.various_artists_aliases = list(VARIOUS_ARTISTS_ALIASES)
        if self.placeholder_artists is None:
            self.placeholder_artists = list(PLACEHOLDER_ARTISTS)
        if self.underground_keywords is None:
            self.underground_keywords = list(UNDERGROUND_KEYWORDS)
        if self.remix_keywords is None:
            self.remix_keywords = list(REMIX_KEYWORDS)
        if self.compilation_keywords is None:
            self.compilation_keywords = list(COMPILATION_KEYWORDS)
        if self.artist_aliases is None:
            self.artist_aliases = {}


@dataclass
class EnrichmentConfig:
    """External metadata lookup configuration"""
    enabled: bool = True
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    scoring_weights: Dict[str, float] = None
    cache_ttl_hours: float = METADATA_CACHE_TTL_HOURS
    timeout: float = API_TIMEOUT
    user_agent: str = USER_AGENT
    discogs_enabled: bool = False
    discogs_token: str = ""
    discogs_rate_per_second: float = DISCOGS_RATE_PER_SECOND
    discogs_bucket_size: int = DISCOGS_BUCKET_SIZE
    musicbrainz_enabled: bool = True
    musicbrainz_rate_per_second: float = MUSICBRAINZ_RATE_PER_SECOND
    musicbrainz_bucket_size: int = MUSICBRAINZ_BUCKET_SIZE

    def __post_init__(self):
        if self.scoring_weights is None:
            self.scoring_weights = dict(DEFAULT_SCORING_WEIGHTS)
        if not self.discogs_token:
            self.discogs_token = os.environ.get("DISCOGS_TOKEN", "")


@dataclass
class ProcessingConfig:
    """Processing pipeline configuration"""
    max_workers: int = DEFAULT_WORKER_THREADS
    dry_run: bool = True
    incremental: bool = True
    progress_interval: int = PROGRESS_UPDATE_INTERVAL
    history_size: int = JOB_HISTORY_SIZE
    state_db_path: str = "ordrfm_state.db"


@dataclass
class UIConfig:
    """User interface configuration"""
    progress_mode: str = "bar"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    color_output: bool = True


@dataclass
class OrdrConfig:
    """Complete configuration for ordrfm"""
    organization: OrganizationConfig = None
    enrichment: EnrichmentConfig = None
    processing: ProcessingConfig = None
    ui: UIConfig = None

    def __post_init__(self):
        if self.organization is None:
            self.organization = OrganizationConfig()
        if self.enrichment is None:
            self.enrichment = EnrichmentConfig()
        if self.processing is None:
            self.processing = ProcessingConfig()
        if self.ui is None:
            self.ui = UIConfig()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_SECTIONS = {
    'organization': OrganizationConfig,
    'enrichment': EnrichmentConfig,
    'processing': ProcessingConfig,
    'ui': UIConfig,
}


class ConfigManager:
    """
    Centralized configuration manager with hierarchical loading:
    1. Default settings
    2. Project configs (config/*.json)
    3. User settings (~/.config/ordrfm/)
    4. Overrides and CLI arguments
    """

    def __init__(self, project_root: Optional[Path] = None,
                 user_config_dir: Optional[Path] = None):
        self.logger = logging.getLogger(__name__)

        if project_root is None:
            current = Path(__file__).parent
            while current != current.parent:
                if (current / "pyproject.toml").exists():
                    project_root = current
                    break
                current = current.parent
            else:
                project_root = Path.cwd()

        self.project_root = Path(project_root)
        self.config_dir = self.project_root / "config"
        self.user_config_dir = Path(user_config_dir) if user_config_dir else self._get_user_config_dir()

        self._config: Optional[OrdrConfig] = None

        self.logger.debug(f"ConfigManager initialized (project root: {self.project_root}, "
                          f"user config: {self.user_config_dir})")

    def _get_user_config_dir(self) -> Path:
        """Get platform-appropriate user config directory"""
        system = platform.system()

        if system == "Windows":
            base = Path(os.environ.get("APPDATA", "~"))
        elif system == "Darwin":  # macOS
            base = Path("~/Library/Application Support")
        else:  # Linux and others
            base = Path(os.environ.get("XDG_CONFIG_HOME", "~/.config"))

        return (base / "ordrfm").expanduser()

    def load_config(self,
                    project_config: Optional[str] = None,
                    user_overrides: Optional[Dict] = None,
                    cli_overrides: Optional[Dict] = None) -> OrdrConfig:
        """
        Load configuration from all sources with proper precedence.

        Args:
            project_config: Project config file name or path (e.g., "production.json")
            user_overrides: User-specific settings
            cli_overrides: Command-line argument overrides

        Returns:
            Complete configuration object
        """
        config_dict = OrdrConfig().to_dict()

        if project_config:
            project_config_path = Path(project_config)
            if not project_config_path.is_absolute() and not project_config_path.exists():
                project_config_path = self.config_dir / project_config
        else:
            project_config_path = self.config_dir / "default.json"

        if project_config_path.exists():
            config_dict = self._merge_configs(config_dict, self._load_json_config(project_config_path))
            self.logger.info(f"Loaded project config: {project_config_path}")
        elif project_config:
            raise ConfigurationError(f"Config file not found: {project_config_path}")

        user_config_path = self.user_config_dir / "settings.json"
        if user_config_path.exists():
            config_dict = self._merge_configs(config_dict, self._load_json_config(user_config_path))
            self.logger.info(f"Loaded user config: {user_config_path}")

        if user_overrides:
            config_dict = self._merge_configs(config_dict, user_overrides)
            self.logger.debug("Applied user overrides")

        if cli_overrides:
            config_dict = self._merge_configs(config_dict, cli_overrides)
            self.logger.debug("Applied CLI overrides")

        self._config = self._dict_to_config(config_dict)
        return self._config

    def _load_json_config(self, config_path: Path) -> Dict[str, Any]:
        """Load JSON configuration file"""
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load config {config_path}: {e}") from e

    def _merge_configs(self, base: Dict, override: Dict) -> Dict:
        """Deep merge configuration dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _dict_to_config(self, config_dict: Dict) -> OrdrConfig:
        """Convert dictionary to config dataclass, rejecting unknown keys"""
        sections = {}
        for name, section_cls in _SECTIONS.items():
            values = config_dict.get(name) or {}
            known = {f.name for f in fields(section_cls)}
            unknown = set(values) - known
            if unknown:
                raise ConfigurationError(
                    f"Unknown keys in '{name}' section: {', '.join(sorted(unknown))}"
                )
            sections[name] = section_cls(**values)

        return OrdrConfig(**sections)

    def save_user_settings(self, settings: Dict[str, Any]) -> Path:
        """Save user-specific settings, merged over existing ones"""
        self.user_config_dir.mkdir(parents=True, exist_ok=True)
        user_config_path = self.user_config_dir / "settings.json"

        existing = {}
        if user_config_path.exists():
            existing = self._load_json_config(user_config_path)

        merged = self._merge_configs(existing, settings)
        with open(user_config_path, 'w', encoding='utf-8') as f:
            json.dump(merged, f, indent=2, ensure_ascii=False)

        self.logger.info(f"User settings saved to {user_config_path}")
        return user_config_path

    def get_config(self) -> OrdrConfig:
        """Get current configuration (load if not already loaded)"""
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def validate_config(self, config: OrdrConfig) -> List[str]:
        """Validate configuration and return list of issues"""
        issues = []

        org = config.organization
        if org.organization_mode not in ORGANIZATION_MODES:
            issues.append(f"organization_mode must be one of {', '.join(ORGANIZATION_MODES)}")
        if org.min_label_releases < 1:
            issues.append("min_label_releases must be at least 1")
        if org.max_title_length < 10:
            issues.append("max_title_length must be at least 10")

        enrichment = config.enrichment
        if not 0.0 <= enrichment.confidence_threshold <= 1.0:
            issues.append("confidence_threshold must be between 0.0 and 1.0")

        weights = enrichment.scoring_weights
        missing = {'title', 'artist', 'year', 'label'} - set(weights)
        if missing:
            issues.append(f"scoring_weights missing: {', '.join(sorted(missing))}")
        elif any(w < 0 for w in weights.values()):
            issues.append("scoring_weights must be non-negative")
        elif abs(sum(weights.values()) - 1.0) > 1e-6:
            issues.append(f"scoring_weights must sum to 1.0 (got {sum(weights.values()):.3f})")

        if enrichment.discogs_enabled and not enrichment.discogs_token:
            issues.append("discogs_enabled requires discogs_token")
        if enrichment.timeout <= 0:
            issues.append("timeout must be positive")

        if config.processing.max_workers < 1:
            issues.append("max_workers must be at least 1")
        if config.processing.history_size < 1:
            issues.append("history_size must be at least 1")

        return issues


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get global config manager instance"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_config(project_config: Optional[str] = None, **overrides) -> OrdrConfig:
    """Convenience function to get configuration"""
    manager = get_config_manager()
    return manager.load_config(project_config=project_config, cli_overrides=overrides)
