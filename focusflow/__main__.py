"""
Entry point for running focusflow as a module: python -m focusflow
"""

from focusflow.cli.commands import app

if __name__ == "__main__":
    app()
