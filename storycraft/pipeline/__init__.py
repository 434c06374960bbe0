"""Multi-stage story pipeline.

Public entry points:
  generate_outline       — once per story
  create_initial_state   — neutral state before episode 1
  generate_episode       — draft → quality check → [refine → check]* → state update

Stages never touch storage; callers pass data in and persist what comes out.
"""

from .episode import clean_title, generate_episode, refine_tier  # noqa: F401
from .outline import generate_outline, validate_outline  # noqa: F401
from .quality import check_quality  # noqa: F401
from .retry import GenerationFailure  # noqa: F401
from .state import create_initial_state, enforce_invariants, update_state  # noqa: F401
