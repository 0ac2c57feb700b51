"""Page cache, eviction and prefetch scheduling for the flip viewer."""
