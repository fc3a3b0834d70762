"""
Entry point for running AI Visibility Jobs as a module.

Enables execution via:
    python -m ai_visibility [command] [options]

Examples:
    python -m ai_visibility --help
    python -m ai_visibility worker --drain
    python -m ai_visibility demo
"""

from ai_visibility.cli import app

if __name__ == "__main__":
    app()
