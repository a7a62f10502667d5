"""SceneCast: renders narrated scene lists into finished videos."""

__version__ = "1.0.0"
