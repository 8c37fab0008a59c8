"""Core types shared by every layer: enums, events, results, config, errors."""
