"""Alert deduplication, persistence and notification fan-out."""

__all__: list[str] = []
