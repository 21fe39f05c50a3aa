from .counting import explain_skip, normalize_slug, should_count
from .stage import score_finisher

__all__ = ["explain_skip", "normalize_slug", "score_finisher", "should_count"]
