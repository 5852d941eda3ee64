"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Endpoint paths, polling defaults, unit conversions
- exceptions: Custom exception hierarchy
- classifier: Maps transport failures to user-facing outcomes
- geometry: Polygon validation and measurement helpers
"""
