"""gitpress: version a CMS database as a git history of entity files."""

__version__ = "0.1.0"
