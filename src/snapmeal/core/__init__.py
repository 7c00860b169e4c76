"""SnapMeal core: configuration, settings and the service container."""
