"""Tests for the command line front end."""

import argparse
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

from rich.tree import Tree

from orgsync.core.client import DeployDetails, DeployResult
from orgsync.core.project import ProjectError, ProjectValidationError
from orgsync.main import _add_index_nodes, cmd_compile, cmd_status, cmd_watch_logs, main


def _args(**kwargs) -> argparse.Namespace:
    return argparse.Namespace(path=None, verbose=False, **kwargs)


class TestMain:
    """Tests for CLI dispatch and handlers."""

    def test_no_command_prints_help(self) -> None:
        with patch.object(sys, "argv", ["orgsync"]):
            assert main() == 1

    @patch("orgsync.main.OrgSyncConfig")
    @patch("orgsync.main._open_project")
    def test_status_invalid_project(self, mock_open, _config) -> None:
        mock_open.side_effect = ProjectValidationError("This does not seem to be a valid project directory.")
        assert cmd_status(_args()) == 1

    @patch("orgsync.main.OrgSyncConfig")
    @patch("orgsync.main._open_project")
    def test_compile_failure_exit_code(self, mock_open, _config) -> None:
        project = MagicMock()
        project.name = "Proj1"
        project.compile.return_value = DeployResult(
            done=True,
            success=False,
            status="Failed",
            details=DeployDetails(component_failures=[{"fileName": "classes/Foo.cls", "problem": "oops"}]),
        )
        mock_open.return_value = project

        assert cmd_compile(_args()) == 1

    @patch("orgsync.main.OrgSyncConfig")
    @patch("orgsync.main._open_project")
    def test_compile_project_error_exit_code(self, mock_open, _config) -> None:
        project = MagicMock()
        project.compile.side_effect = ProjectError("Could not build deploy archive: no src")
        mock_open.return_value = project

        assert cmd_compile(_args()) == 1

    @patch("orgsync.main.time.sleep")
    @patch("orgsync.main.OrgSyncConfig")
    @patch("orgsync.main._open_project")
    def test_watch_logs_until_interrupted(self, mock_open, _config, mock_sleep) -> None:
        project = MagicMock()
        project.name = "Proj1"
        project.poll_logs.side_effect = [[Path("debug/logs/07L1.log")], [], KeyboardInterrupt()]
        mock_open.return_value = project

        assert cmd_watch_logs(_args()) == 0
        assert project.poll_logs.call_count == 3
        assert mock_sleep.call_count == 2

    def test_index_tree_skips_hidden_nodes(self) -> None:
        tree = Tree("Proj1")
        _add_index_nodes(
            tree,
            [
                {
                    "text": "ApexClass",
                    "isFolder": True,
                    "select": True,
                    "visibility": True,
                    "children": [
                        {"text": "Foo", "select": True, "visibility": True},
                        {"text": "Bar", "select": False, "visibility": False},
                    ],
                },
                {"text": "ApexPage", "isFolder": True, "select": False, "visibility": False},
            ],
        )

        assert len(tree.children) == 1
        assert len(tree.children[0].children) == 1
