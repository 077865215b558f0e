"""HTTP surface for the recommendation engine."""
