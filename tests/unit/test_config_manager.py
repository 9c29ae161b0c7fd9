"""
Unit tests for ConfigManager.

Tests the hierarchical configuration loading system and dataclass-based config.
"""

import json
import shutil
import tempfile
from pathlib import Path

import pytest

from ordrfm.core.config_manager import (
    ConfigManager,
    OrdrConfig,
    OrganizationConfig,
    EnrichmentConfig,
    ProcessingConfig,
    UIConfig,
    DEFAULT_TEMPLATES,
)
from ordrfm.core.exceptions import ConfigurationError


class TestConfigDataclasses:
    """Test configuration dataclasses."""

    def test_organization_config_defaults(self):
        config = OrganizationConfig()
        assert config.organization_mode == "hybrid"
        assert config.enable_electronic is True
        assert config.min_label_releases == 3
        assert config.templates == DEFAULT_TEMPLATES
        assert 'VA' in config.various_artists_aliases
        assert config.series_patterns == []

    def test_partial_templates_are_merged_with_defaults(self):
        config = OrganizationConfig(templates={'artist': '{artist}/{title}'})
        assert config.templates['artist'] == '{artist}/{title}'
        assert config.templates['label'] == DEFAULT_TEMPLATES['label']

    def test_enrichment_config_defaults(self, monkeypatch):
        monkeypatch.delenv("DISCOGS_TOKEN", raising=False)
        config = EnrichmentConfig()
        assert config.confidence_threshold == 0.7
        assert config.scoring_weights == {'title': 0.4, 'artist': 0.3, 'year': 0.2, 'label': 0.1}
        assert config.discogs_enabled is False
        assert config.discogs_token == ""
        assert config.musicbrainz_enabled is True

    def test_discogs_token_from_environment(self, monkeypatch):
        monkeypatch.setenv("DISCOGS_TOKEN", "env-token")
        assert EnrichmentConfig().discogs_token == "env-token"

    def test_processing_and_ui_defaults(self):
        processing = ProcessingConfig()
        assert processing.dry_run is True
        assert processing.max_workers == 4
        assert processing.incremental is True
        ui = UIConfig()
        assert ui.progress_mode == "bar"
        assert ui.color_output is True

    def test_ordr_config_initialization(self):
        config = OrdrConfig()
        assert isinstance(config.organization, OrganizationConfig)
        assert isinstance(config.enrichment, EnrichmentConfig)
        assert set(config.to_dict()) == {'organization', 'enrichment', 'processing', 'ui'}


class TestConfigManager:
    """Test ConfigManager functionality."""

    @pytest.fixture
    def temp_dirs(self):
        """Create temporary directories for testing."""
        project_root = tempfile.mkdtemp()
        config_dir = Path(project_root) / "config"
        config_dir.mkdir()
        user_dir = tempfile.mkdtemp()

        yield project_root, config_dir, user_dir

        shutil.rmtree(project_root, ignore_errors=True)
        shutil.rmtree(user_dir, ignore_errors=True)

    @pytest.fixture
    def config_manager(self, temp_dirs):
        """Create ConfigManager with temp directories."""
        project_root, _, user_dir = temp_dirs
        return ConfigManager(project_root=Path(project_root), user_config_dir=Path(user_dir))

    def test_load_default_config(self, config_manager):
        config = config_manager.load_config()

        assert isinstance(config, OrdrConfig)
        assert config.processing.dry_run is True
        assert config_manager.get_config() is config

    def test_precedence(self, config_manager, temp_dirs):
        """project file < user settings < user overrides < CLI overrides"""
        _, config_dir, user_dir = temp_dirs
        (config_dir / "default.json").write_text(json.dumps({
            'organization': {'organization_mode': 'label', 'min_label_releases': 5},
            'processing': {'max_workers': 2},
        }))
        (Path(user_dir) / "settings.json").write_text(json.dumps({
            'processing': {'max_workers': 6},
        }))

        config = config_manager.load_config(
            user_overrides={'organization': {'min_label_releases': 7}},
            cli_overrides={'organization': {'organization_mode': 'artist'}},
        )

        assert config.organization.organization_mode == 'artist'
        assert config.organization.min_label_releases == 7
        assert config.processing.max_workers == 6
        # Untouched defaults survive the deep merge
        assert config.organization.enable_electronic is True

    def test_named_project_config(self, config_manager, temp_dirs):
        _, config_dir, _ = temp_dirs
        (config_dir / "production.json").write_text(json.dumps({'ui': {'log_level': 'WARNING'}}))

        config = config_manager.load_config(project_config="production.json")

        assert config.ui.log_level == 'WARNING'

    def test_missing_project_config(self, config_manager):
        with pytest.raises(ConfigurationError):
            config_manager.load_config(project_config="nope.json")

    def test_invalid_json(self, config_manager, temp_dirs):
        _, config_dir, _ = temp_dirs
        (config_dir / "default.json").write_text("{not json")

        with pytest.raises(ConfigurationError):
            config_manager.load_config()

    def test_unknown_keys_rejected(self, config_manager):
        with pytest.raises(ConfigurationError, match="turbo"):
            config_manager.load_config(cli_overrides={'processing': {'turbo': True}})

    def test_save_user_settings_merges(self, config_manager, temp_dirs):
        _, _, user_dir = temp_dirs
        config_manager.save_user_settings({'ui': {'log_level': 'DEBUG'}})
        path = config_manager.save_user_settings({'ui': {'color_output': False}})

        saved = json.loads(path.read_text())
        assert saved == {'ui': {'log_level': 'DEBUG', 'color_output': False}}
        assert path == Path(user_dir) / "settings.json"

        config = config_manager.load_config()
        assert config.ui.log_level == 'DEBUG'
        assert config.ui.color_output is False


class TestConfigValidation:
    """validate_config issue reporting."""

    def test_valid_default(self):
        assert ConfigManager(project_root=Path(tempfile.gettempdir())).validate_config(OrdrConfig()) == []

    @pytest.mark.parametrize("section,values,fragment", [
        ('organization', {'organization_mode': 'genre'}, "organization_mode"),
        ('organization', {'min_label_releases': 0}, "min_label_releases"),
        ('enrichment', {'confidence_threshold': 1.5}, "confidence_threshold"),
        ('enrichment', {'scoring_weights': {'title': 1.0}}, "missing"),
        ('enrichment', {'scoring_weights': {'title': 0.5, 'artist': 0.5, 'year': 0.5, 'label': 0.0}},
         "sum to 1.0"),
        ('enrichment', {'discogs_enabled': True, 'discogs_token': ''}, "discogs_token"),
        ('processing', {'max_workers': 0}, "max_workers"),
    ])
    def test_issues(self, section, values, fragment):
        config = OrdrConfig()
        for key, value in values.items():
            setattr(getattr(config, section), key, value)

        issues = ConfigManager(project_root=Path(tempfile.gettempdir())).validate_config(config)

        assert any(fragment in issue for issue in issues)
