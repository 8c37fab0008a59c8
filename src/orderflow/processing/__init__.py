"""Lane-affine consumption of order events."""
