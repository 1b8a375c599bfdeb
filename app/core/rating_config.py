"""Configuration constants for rating collection refreshes."""

# One rating collection = one rater's battles within one project.
# At most one refresh per collection may run at a time.
RATING_LOCK_KEY_FORMAT = "rating_refresh_lock:{project_id}:{user_id}"

# whr_calculations.triggered_by values
TRIGGER_AUTO = "auto"
TRIGGER_MANUAL = "manual"


def get_rating_lock_key(project_id: str, user_id: str) -> str:
    """Get Redis lock key for a (project, user) rating collection."""
    return RATING_LOCK_KEY_FORMAT.format(project_id=str(project_id).lower(), user_id=str(user_id).lower())
