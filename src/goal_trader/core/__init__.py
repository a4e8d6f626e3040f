"""
Core Layer - Match tracking and trading decisions.

This module provides:
    - MatchTracker: Main orchestrator (discovery -> polling -> decisions -> execution)
    - TrackerConfig: Configuration for the tracker
    - TrackerStats: Runtime statistics
    - MatchRegistry: Tracked matches, status lifecycle, score updates
    - Phase / PhaseConfig / classify: Match phase and polling cadence
    - AdaptivePoller: Batched live polling at phase cadence
    - ChangeDetector: Goal and cancellation detection against stored scores
    - DecisionEngine: Goal scenario -> position actions
    - GoalCooldown: Per-match trading cooldown after a goal
    - NotificationOutbox: Decoupled notification delivery
    - BackgroundTasksManager: Manages async background loops

Trading Rules:
    - First goal (new leader): back the leader, close contradicting positions
    - Equalizer: close everything, back the draw
    - Lead extension: take partial profit, add to leader and draw-NO

Data Flow:
    1. Discovery registers upcoming matches
    2. Registry advances statuses from the clock
    3. Poller fetches live snapshots for due matches
    4. ChangeDetector compares against the stored score
    5. DecisionEngine turns goals into actions
    6. Execution coordinator submits and records fills
"""

# Orchestration
from .tracker import MatchTracker, TickResult, TrackerConfig, TrackerStats

# Registry and phases
from .registry import MatchRegistry, StatusTransition
from .phase import Phase, PhaseConfig, PhaseInfo, classify

# Polling and detection
from .poller import AdaptivePoller, PollerConfig, PollResult
from .change_detector import ChangeDetector

# Decisions
from .decision_engine import (
    Decision,
    DecisionConfig,
    DecisionEngine,
    GoalCooldown,
    Scenario,
    classify_transition,
)

# Notifications
from .notifications import Notification, NotificationOutbox, NotificationType

# Background tasks
from .background_tasks import BackgroundTaskConfig, BackgroundTasksManager

__all__ = [
    # Orchestration
    "MatchTracker",
    "TickResult",
    "TrackerConfig",
    "TrackerStats",
    # Registry and phases
    "MatchRegistry",
    "StatusTransition",
    "Phase",
    "PhaseConfig",
    "PhaseInfo",
    "classify",
    # Polling and detection
    "AdaptivePoller",
    "PollerConfig",
    "PollResult",
    "ChangeDetector",
    # Decisions
    "Decision",
    "DecisionConfig",
    "DecisionEngine",
    "GoalCooldown",
    "Scenario",
    "classify_transition",
    # Notifications
    "Notification",
    "NotificationOutbox",
    "NotificationType",
    # Background tasks
    "BackgroundTaskConfig",
    "BackgroundTasksManager",
]
