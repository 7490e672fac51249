"""
shift-journey-core: promise lifecycle and integrity scoring for personal accountability.

A user works towards one active goal at a time, split into ordered
milestones. Each milestone can be locked as a promise with a deadline and
is then either kept or broken. Every outcome moves the user's integrity
score, is recorded in an append-only ledger, and may move the user
between reliability tiers.

Example:
    >>> from shift_journey import apply_outcome, Outcome, classify
    >>> result = apply_outcome(50, 0, Outcome.BROKEN)
    >>> result.new_score, result.new_failure_streak
    (40, 1)
    >>> classify(result.new_score).value
    'inconsistent'

Persistence is pluggable: a :class:`Journey` awaits the abstract stores
bundled in :class:`Backend`, and ``Backend.in_memory()`` provides
dict-backed adapters for tests and local tooling.
"""

__version__ = "0.1.0"

# Core data models and errors
from shift_journey.models import (
    ArchivedGoal,
    AuthSession,
    CalendarEntry,
    DeadlinePassedError,
    Goal,
    GoalStats,
    GoalStatus,
    ImmutableMilestoneError,
    InvariantViolation,
    Milestone,
    MilestoneStatus,
    NotFoundError,
    PersistenceError,
    Promise,
    SessionBootstrapError,
    ShiftJourneyError,
    StorageError,
    TemporalViolation,
    User,
    new_id,
)

# Configuration
from shift_journey.config import (
    DEFAULT_CONFIG,
    JourneyConfig,
    ScorePolicyConfig,
    load_config,
)

# Scoring and tiers
from shift_journey.scoring import (
    DEFAULT_POLICY,
    Outcome,
    ScoreResult,
    apply_outcome,
    broken_penalty,
    clamp_score,
)
from shift_journey.tiers import (
    TIER_BOUNDS,
    Tier,
    TierChangeNotification,
    classify,
    detect_change,
    tier_label,
    tier_rank,
)

# Milestone lifecycle
from shift_journey.lifecycle import (
    AUTO_EXPIRED_REASON,
    TERMINAL_STATUSES,
    TimeRemaining,
    TransitionValidationResult,
    time_remaining,
    validate_transition,
)

# Integrity ledger
from shift_journey.ledger import (
    HistoryReason,
    IntegrityAnomaly,
    IntegrityHistoryRecord,
    IntegrityLedger,
    LedgerStats,
    ReducedIntegrityState,
    reduce_history,
    streak_before,
)

# Calendar journal
from shift_journey.journal import (
    CalendarJournal,
    ConsistencyStats,
    compute_streak,
    consistency_stats,
)

# Storage contracts and in-memory adapters
from shift_journey.storage import (
    Backend,
    CalendarStore,
    GoalStore,
    InMemoryCalendarStore,
    InMemoryGoalStore,
    InMemoryIntegrityStore,
    InMemoryMilestoneStore,
    InMemorySessionProvider,
    InMemoryUserStore,
    IntegrityStore,
    MilestoneStore,
    SessionEvent,
    SessionProvider,
    UserStore,
)

# Aggregate, session guard, sharing and analytics
from shift_journey.journey import (
    GoalCompletion,
    Journey,
    PromiseOutcome,
    goal_stats,
)
from shift_journey.session import SessionGuard
from shift_journey.share import (
    SharedMilestoneView,
    lookup_shared_milestone,
    mask_score,
)
from shift_journey.analytics import (
    PromiseAnalytics,
    all_milestones,
    summarize_promises,
)

__all__ = [
    # Version
    "__version__",
    # Models
    "ArchivedGoal",
    "AuthSession",
    "CalendarEntry",
    "Goal",
    "GoalStats",
    "GoalStatus",
    "Milestone",
    "MilestoneStatus",
    "Promise",
    "User",
    "new_id",
    # Errors
    "ShiftJourneyError",
    "InvariantViolation",
    "ImmutableMilestoneError",
    "TemporalViolation",
    "DeadlinePassedError",
    "NotFoundError",
    "StorageError",
    "PersistenceError",
    "SessionBootstrapError",
    # Configuration
    "DEFAULT_CONFIG",
    "JourneyConfig",
    "ScorePolicyConfig",
    "load_config",
    # Scoring
    "DEFAULT_POLICY",
    "Outcome",
    "ScoreResult",
    "apply_outcome",
    "broken_penalty",
    "clamp_score",
    # Tiers
    "TIER_BOUNDS",
    "Tier",
    "TierChangeNotification",
    "classify",
    "detect_change",
    "tier_label",
    "tier_rank",
    # Lifecycle
    "AUTO_EXPIRED_REASON",
    "TERMINAL_STATUSES",
    "TimeRemaining",
    "TransitionValidationResult",
    "time_remaining",
    "validate_transition",
    # Ledger
    "HistoryReason",
    "IntegrityAnomaly",
    "IntegrityHistoryRecord",
    "IntegrityLedger",
    "LedgerStats",
    "ReducedIntegrityState",
    "reduce_history",
    "streak_before",
    # Calendar
    "CalendarJournal",
    "ConsistencyStats",
    "compute_streak",
    "consistency_stats",
    # Storage
    "Backend",
    "CalendarStore",
    "GoalStore",
    "IntegrityStore",
    "MilestoneStore",
    "SessionEvent",
    "SessionProvider",
    "UserStore",
    "InMemoryCalendarStore",
    "InMemoryGoalStore",
    "InMemoryIntegrityStore",
    "InMemoryMilestoneStore",
    "InMemorySessionProvider",
    "InMemoryUserStore",
    # Journey
    "GoalCompletion",
    "Journey",
    "PromiseOutcome",
    "goal_stats",
    "SessionGuard",
    # Sharing
    "SharedMilestoneView",
    "lookup_shared_milestone",
    "mask_score",
    # Analytics
    "PromiseAnalytics",
    "all_milestones",
    "summarize_promises",
]
