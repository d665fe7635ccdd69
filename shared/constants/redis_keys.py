class RedisKeys:
    """Centralised Redis key pattern definitions"""

    # Day-scoped patterns; resource type and id are concatenated
    SUM_DAY = "sum_day_{bucket}_{resource_type}{resource_id}"
    MAX_DAY = "max_day_{bucket}_{resource_type}{resource_id}"
    COUNT_DAY = "count_day_{bucket}_{resource_type}{resource_id}"
    AVG_DAY = "avg_day_{bucket}_{resource_type}{resource_id}"

    # Lifetime patterns
    COUNT = "count_{resource_type}_{resource_id}"
    SUM = "sum_{resource_type}_{resource_id}"
    AVG = "avg_{resource_type}_{resource_id}"

    @classmethod
    def daily_key(
        cls, family: str, bucket: str, resource_type: str, resource_id: int
    ) -> str:
        """Generate a day-scoped key for the given aggregate family."""
        patterns = {
            "sum": cls.SUM_DAY,
            "max": cls.MAX_DAY,
            "count": cls.COUNT_DAY,
            "avg": cls.AVG_DAY,
        }
        pattern = patterns.get(family)
        if not pattern:
            raise ValueError(f"Unknown aggregate family: {family}")
        return pattern.format(
            bucket=bucket, resource_type=resource_type, resource_id=resource_id
        )

    @classmethod
    def lifetime_key(cls, family: str, resource_type: str, resource_id: int) -> str:
        """Generate a lifetime key for the given aggregate family."""
        patterns = {"sum": cls.SUM, "count": cls.COUNT, "avg": cls.AVG}
        pattern = patterns.get(family)
        if not pattern:
            raise ValueError(f"Unknown aggregate family: {family}")
        return pattern.format(resource_type=resource_type, resource_id=resource_id)
