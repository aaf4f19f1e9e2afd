"""shodan - GitHub bot that bumps Go module dependencies once pull requests merge."""

__version__ = "0.1.0"
