"""Pure domain layer: value objects, the movement resolver and the clock."""
