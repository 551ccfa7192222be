"""Storage layer - Database schemas and repositories."""

from memecoin_lifecycle_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from memecoin_lifecycle_tracker.storage.models import (
    Base,
    EvaluationResultModel,
    MatchedRoundModel,
    ObservationModel,
    RollingMetricsModel,
    SignalOutcomeModel,
    TrackedEntityModel,
)
from memecoin_lifecycle_tracker.storage.repos import (
    EvaluationResultDTO,
    EvaluationResultRepository,
    MatchedRoundDTO,
    MatchedRoundRepository,
    ObservationDTO,
    ObservationRepository,
    RollingMetricsDTO,
    RollingMetricsRepository,
    SignalOutcomeDTO,
    SignalOutcomeRepository,
    TrackedEntityDTO,
    TrackedEntityRepository,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "EvaluationResultDTO",
    "EvaluationResultModel",
    "EvaluationResultRepository",
    "MatchedRoundDTO",
    "MatchedRoundModel",
    "MatchedRoundRepository",
    "ObservationDTO",
    "ObservationModel",
    "ObservationRepository",
    "RollingMetricsDTO",
    "RollingMetricsModel",
    "RollingMetricsRepository",
    "SignalOutcomeDTO",
    "SignalOutcomeModel",
    "SignalOutcomeRepository",
    "TrackedEntityDTO",
    "TrackedEntityModel",
    "TrackedEntityRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
