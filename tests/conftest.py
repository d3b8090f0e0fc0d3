"""Shared test fixtures."""

from pathlib import Path

# Test fixture config directory with synthetic data
FIXTURE_CONFIG_DIR = Path(__file__).parent / "fixtures" / "config"

MIGRATIONS_DIR = Path(__file__).parent.parent / "chatledger" / "database" / "migrations"

PROJECT_ID = "test-project"

# Mirrors tests/fixtures/config/projects.yaml
PROJECTS = [
    {
        "id": PROJECT_ID,
        "name": "Test Project",
        "currency": "EGP",
        "partners": [
            {"id": "ahmed", "name": "Ahmed", "aliases": ["أحمد"]},
            {"id": "mona", "name": "Mona"},
            {"id": "karim", "name": "Karim"},
        ],
    },
]
