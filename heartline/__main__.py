"""Entry point for python -m heartline execution.

This module allows running Heartline as a module:
    python -m heartline probe
    python -m heartline watch
    python -m heartline --help
"""

from heartline.cli import run

if __name__ == "__main__":
    run()
