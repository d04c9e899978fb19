"""
cli-hub - provider profile manager for AI coding CLIs

One authoritative store of provider profiles, rendered into the live
configuration files of Claude Code, Codex and Gemini CLI.

Quick Start:
    pip install -e .
    cli-hub list claude
    cli-hub switch claude <provider-id>
"""

from clihub.cli.cli import main

if __name__ == "__main__":
    main()
