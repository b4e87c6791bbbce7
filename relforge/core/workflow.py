"""Render the tag-triggered CI workflow from the project's release matrix.

The generated GitHub Actions workflow runs one job per matrix entry on the
entry's runner and delegates everything else to ``relforge release``, so
the CI definition carries no build logic of its own.
"""

from __future__ import annotations

from typing import Any

import yaml

from relforge.models.project import ProjectConfig

WORKFLOW_PATH = ".github/workflows/release.yml"


def workflow_document(project: ProjectConfig, *, python_version: str = "3.12") -> dict[str, Any]:
    """Build the workflow as plain data."""
    include = [
        {
            "os": entry.os,
            "artifact_name": entry.artifact_name,
            "asset_name": entry.asset_name,
        }
        for entry in project.release.matrix
    ]
    return {
        "name": "Release",
        "on": {"push": {"tags": [project.release.tag_pattern]}},
        "permissions": {"contents": "write"},
        "jobs": {
            "release": {
                "name": "Build and Release",
                "runs-on": "${{ matrix.os }}",
                "strategy": {
                    # A failing platform must not cancel its siblings.
                    "fail-fast": False,
                    "matrix": {"include": include},
                },
                "steps": [
                    {"name": "Checkout code", "uses": "actions/checkout@v4"},
                    {
                        "name": "Set up Python",
                        "uses": "actions/setup-python@v5",
                        "with": {"python-version": python_version},
                    },
                    {"name": "Install relforge", "run": "pip install relforge"},
                    {
                        "name": "Build and upload",
                        "run": (
                            "relforge release ${{ github.ref_name }} "
                            "--source . --only '${{ matrix.asset_name }}'"
                        ),
                        "env": {
                            "RELFORGE_GITHUB_TOKEN": "${{ secrets.GITHUB_TOKEN }}",
                            "RELFORGE_GITHUB_REPOSITORY": "${{ github.repository }}",
                        },
                    },
                ],
            }
        },
    }


def render_workflow(project: ProjectConfig, *, python_version: str = "3.12") -> str:
    """Render the workflow YAML for *project*."""
    document = workflow_document(project, python_version=python_version)
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False, width=120)
