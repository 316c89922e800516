"""Turn-taking front end for spoken dialogue with barge-in."""

__version__ = "0.1.0"
