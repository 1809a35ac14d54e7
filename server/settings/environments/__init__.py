"""Environment specific settings overrides."""
