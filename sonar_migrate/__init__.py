"""Copy false-positive and won't-fix resolutions between SonarQube projects."""

__version__ = "1.0.0"
