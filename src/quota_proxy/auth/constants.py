"""Constants for the auth package."""

# Time constants (in seconds unless otherwise noted)
DEFAULT_TOKEN_EXPIRY_SECONDS = 3600  # used when a provider omits expires_in

# Poll interval multiplier on a slow_down answer
SLOW_DOWN_FACTOR = 2
