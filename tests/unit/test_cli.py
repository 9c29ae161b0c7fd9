"""
Tests for the ordrfm command line interface.
"""

import json
import os
from unittest.mock import patch

import pytest

from ordrfm.cli.main import build_overrides, create_parser, main
from ordrfm.core.orchestrator import OrganizationService
from ordrfm.core.state_store import StateStore


class TestParser:
    """Argument parsing."""

    def setup_method(self):
        self.parser = create_parser()

    def test_organize_requires_source(self):
        with pytest.raises(SystemExit):
            self.parser.parse_args(["organize"])

    def test_organize_defaults_leave_config_alone(self):
        args = self.parser.parse_args(["organize", "-s", "music"])

        assert args.dry_run is None
        assert args.parallel is None
        assert args.enrichment is None
        assert args.incremental is None

    def test_move_disables_dry_run(self):
        assert self.parser.parse_args(["organize", "-s", "m", "--move"]).dry_run is False
        assert self.parser.parse_args(["organize", "-s", "m", "--dry-run"]).dry_run is True

    def test_move_and_dry_run_are_exclusive(self):
        with pytest.raises(SystemExit):
            self.parser.parse_args(["organize", "-s", "m", "--move", "--dry-run"])

    def test_parallel_flag(self):
        assert self.parser.parse_args(["organize", "-s", "m", "-p"]).parallel == 0
        assert self.parser.parse_args(["organize", "-s", "m", "--parallel", "3"]).parallel == 3

    def test_rollback_needs_exactly_one_target(self):
        with pytest.raises(SystemExit):
            self.parser.parse_args(["rollback"])
        with pytest.raises(SystemExit):
            self.parser.parse_args(["rollback", "--batch", "b", "--operation", "o"])

    def test_rollback_preview(self):
        args = self.parser.parse_args(["rollback", "--batch", "b1", "--dry-run"])
        assert args.batch == "b1"
        assert args.preview is True


class TestBuildOverrides:
    """CLI flags mapped onto config sections."""

    def test_organize_flags(self):
        args = create_parser().parse_args([
            "organize", "-s", "music", "-d", "/out", "--move", "-p", "4", "--no-enrichment",
            "--mode", "label", "--db", "state.db", "--log-level", "DEBUG",
        ])

        assert build_overrides(args) == {
            'organization': {'destination_dir': '/out', 'organization_mode': 'label'},
            'enrichment': {'enabled': False},
            'processing': {'state_db_path': 'state.db', 'dry_run': False, 'max_workers': 4},
            'ui': {'log_level': 'DEBUG'},
        }

    def test_bare_parallel_keeps_configured_workers(self):
        args = create_parser().parse_args(["organize", "-s", "music", "-p"])
        assert 'processing' not in build_overrides(args)

    def test_no_flags_no_overrides(self):
        assert build_overrides(create_parser().parse_args(["stats"])) == {}


@pytest.fixture
def cli_env(temp_workspace, library, make_tracks, monkeypatch):
    """Config file, isolated user settings and a service factory using the fake tag reader"""
    monkeypatch.setenv("XDG_CONFIG_HOME", os.path.join(temp_workspace, "xdg"))
    library.album("Autechre/Amber", make_tracks("Autechre", "Amber"))

    env = {
        'db': os.path.join(temp_workspace, "cli_state.db"),
        'config': os.path.join(temp_workspace, "cli_config.json"),
        'destination': os.path.join(temp_workspace, "organized"),
        'source': library.root,
    }
    settings = {
        'organization': {'destination_dir': env['destination'],
                         'unsorted_dir': os.path.join(temp_workspace, "unsorted")},
        'enrichment': {'enabled': False, 'musicbrainz_enabled': False},
        'processing': {'state_db_path': env['db']},
        'ui': {'progress_mode': 'none', 'color_output': False},
    }
    with open(env['config'], 'w') as f:
        json.dump(settings, f)

    reader = library.tag_reader()
    with patch('ordrfm.cli.main.OrganizationService',
               side_effect=lambda config: OrganizationService(config, tag_reader=reader)):
        yield env


def _run(env, *argv):
    return main(list(argv) + ["-c", env['config']])


class TestMain:
    """End-to-end command runs."""

    def test_organize_defaults_to_dry_run(self, cli_env, capsys):
        assert _run(cli_env, "organize", "-s", cli_env['source']) == 0

        out = capsys.readouterr().out
        assert "DRY RUN" in out
        assert os.path.isdir(os.path.join(cli_env['source'], "Autechre", "Amber"))
        assert not os.path.exists(cli_env['destination'])

    def test_organize_move_then_rollback(self, cli_env, capsys):
        assert _run(cli_env, "organize", "-s", cli_env['source'], "--move") == 0
        assert "ordrfm rollback --batch" in capsys.readouterr().out
        target = os.path.join(cli_env['destination'], "Lossless", "Autechre", "Autechre - Amber")
        assert len(os.listdir(target)) == 4

        batch_id = StateStore(cli_env['db']).list_batches()[0]['batch_id']
        assert _run(cli_env, "rollback", "--batch", batch_id) == 0

        assert "4 files restored" in capsys.readouterr().out
        assert len(os.listdir(os.path.join(cli_env['source'], "Autechre", "Amber"))) == 4

    def test_rollback_preview_moves_nothing(self, cli_env):
        _run(cli_env, "organize", "-s", cli_env['source'], "--move", "--parallel", "2")
        batch_id = StateStore(cli_env['db']).list_batches()[0]['batch_id']

        assert _run(cli_env, "rollback", "--batch", batch_id, "--dry-run") == 0
        assert not os.path.exists(os.path.join(cli_env['source'], "Autechre"))

    def test_stats(self, cli_env, capsys):
        _run(cli_env, "organize", "-s", cli_env['source'], "--move")
        capsys.readouterr()

        assert _run(cli_env, "stats") == 0
        assert "Organized albums: 1" in capsys.readouterr().out

    def test_recover(self, cli_env, capsys):
        assert _run(cli_env, "recover") == 0
        assert "0 completed, 0 marked failed" in capsys.readouterr().out

    def test_missing_source(self, cli_env, capsys):
        assert _run(cli_env, "organize", "-s", os.path.join(cli_env['source'], "nope")) == 1
        assert "does not exist" in capsys.readouterr().err

    def test_invalid_config_value(self, cli_env, capsys):
        with open(cli_env['config']) as f:
            settings = json.load(f)
        settings['processing']['max_workers'] = 0
        with open(cli_env['config'], 'w') as f:
            json.dump(settings, f)

        assert _run(cli_env, "stats") == 1
        assert "max_workers must be at least 1" in capsys.readouterr().err

    def test_unknown_config_key(self, cli_env, capsys):
        with open(cli_env['config'], 'w') as f:
            json.dump({'processing': {'turbo_mode': True}}, f)

        assert _run(cli_env, "stats") == 1
        assert "turbo_mode" in capsys.readouterr().err

    def test_missing_config_file(self, cli_env, temp_workspace):
        assert main(["stats", "-c", os.path.join(temp_workspace, "missing.json")]) == 1
