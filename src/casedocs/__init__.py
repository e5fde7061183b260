"""Case document version control and batch upload orchestration."""

__version__ = "0.1.0"
