"""
Phase Progression Engine

Five ordered phases, Foundation -> Development -> Performance ->
Specialization -> Mastery. A new progression starts in phase 1; phase 5
is terminal.

Each phase carries the declarative criteria needed to ENTER it.
``check_advancement`` evaluates the next phase's criteria and is purely
informational; only ``promote_to_next_phase`` moves an athlete, and only
one step at a time.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.config import settings
from core.exceptions import domain_error, not_found, validation_error
from core.logging import log_fields
from core.store import Store, UnitOfWork, as_uuid, retry_on_conflict
from models import ProgressionState, TrainingPhase
from services.criteria import parse_rules, progression_snapshot, unmet

logger = logging.getLogger(__name__)


def phase_to_dict(phase: Any) -> Dict[str, Any]:
    return {
        "id": phase.id,
        "name": phase.name,
        "display_name": phase.display_name,
        "order": phase.phase_order,
        "description": phase.description,
        "is_active": phase.is_active,
        "advancement_criteria": phase.advancement_criteria or [],
    }


@dataclass
class AdvancementCheck:
    can_advance: bool
    current_phase: Optional[Dict[str, Any]]
    next_phase: Optional[Dict[str, Any]]
    missing_criteria: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "can_advance": self.can_advance,
            "current_phase": self.current_phase,
            "next_phase": self.next_phase,
            "missing_criteria": list(self.missing_criteria),
        }


def find_phase(phases: List[Any], phase_id: Any) -> Optional[Any]:
    return next((phase for phase in phases if phase.id == phase_id), None)


def check_advancement(state: Any, phases: List[Any]) -> AdvancementCheck:
    """
    Evaluate the next phase's entry criteria against ``state``.

    ``phases`` must be the active phases ordered by phase_order.
    """
    current = find_phase(phases, state.current_phase_id)
    if current is None:
        raise not_found("TrainingPhase", state.current_phase_id)

    following = [phase for phase in phases if phase.phase_order > current.phase_order]
    if not following:
        return AdvancementCheck(can_advance=False, current_phase=phase_to_dict(current), next_phase=None)

    next_phase = following[0]
    snapshot = progression_snapshot(state, current.phase_order)
    missing = [rule.describe(snapshot) for rule in unmet(parse_rules(next_phase.advancement_criteria), snapshot)]
    return AdvancementCheck(
        can_advance=not missing,
        current_phase=phase_to_dict(current),
        next_phase=phase_to_dict(next_phase),
        missing_criteria=missing,
    )


class PhaseProgressionEngine:
    def __init__(self, store: Store, achievement_engine=None, max_retries: Optional[int] = None):
        self.store = store
        self.achievement_engine = achievement_engine
        self.max_retries = settings.PROGRESSION_MAX_RETRIES if max_retries is None else max_retries

    def list_phases(self, uow: Optional[UnitOfWork] = None) -> List[Any]:
        """Active phases ordered by phase_order."""
        if uow is not None:
            return uow.find_many(TrainingPhase, order_by=[TrainingPhase.phase_order], is_active=True)
        with self.store.unit_of_work() as own:
            return own.find_many(TrainingPhase, order_by=[TrainingPhase.phase_order], is_active=True)

    def check_advancement(self, athlete_id: Any) -> AdvancementCheck:
        athlete_id = as_uuid(athlete_id, "athlete_id")
        with self.store.unit_of_work() as uow:
            state = uow.find_one(ProgressionState, athlete_id=athlete_id)
            if state is None:
                raise not_found("ProgressionState", athlete_id)
            return check_advancement(state, self.list_phases(uow))

    def promote_to_next_phase(self, athlete_id: Any, target_phase_id: Any) -> Dict[str, Any]:
        """
        Move the athlete into ``target_phase_id``.

        Raises:
            VALIDATION  target id missing or malformed
            NOT_FOUND   no progression state, or unknown phase
            DOMAIN      MAX_PHASE_REACHED / PHASE_NOT_REACHABLE / CRITERIA_NOT_MET
        """
        if target_phase_id is None or (isinstance(target_phase_id, str) and not target_phase_id.strip()):
            raise validation_error("newPhaseId is required", field="newPhaseId")
        try:
            target_id = int(target_phase_id)
        except (TypeError, ValueError):
            raise validation_error(f"newPhaseId must be an integer, got {target_phase_id!r}", field="newPhaseId")
        athlete_id = as_uuid(athlete_id, "athlete_id")

        return retry_on_conflict(
            lambda: self._promote(athlete_id, target_id),
            self.max_retries,
            f"phase promotion for {athlete_id}",
        )

    def _promote(self, athlete_id, target_id: int) -> Dict[str, Any]:
        with self.store.unit_of_work() as uow:
            state = uow.find_one(ProgressionState, athlete_id=athlete_id)
            if state is None:
                raise not_found("ProgressionState", athlete_id)

            phases = self.list_phases(uow)
            check = check_advancement(state, phases)
            current = check.current_phase
            if check.next_phase is None:
                raise domain_error(
                    "MAX_PHASE_REACHED",
                    "Maximum phase already reached",
                    current_phase=current["name"],
                )

            target = find_phase(phases, target_id)
            if target is None:
                raise not_found("TrainingPhase", target_id)
            if target.id != check.next_phase["id"]:
                raise domain_error(
                    "PHASE_NOT_REACHABLE",
                    f"Phase {target.display_name} is not reachable from {current['display_name']}",
                    current_phase=current["name"],
                    target_phase=target.name,
                )
            if not check.can_advance:
                raise domain_error(
                    "CRITERIA_NOT_MET",
                    f"Advancement criteria for {target.display_name} not met",
                    missing_criteria=check.missing_criteria,
                )

            updated = uow.update(
                ProgressionState,
                athlete_id,
                {"current_phase_id": target.id, "phase_started_at": datetime.now(timezone.utc)},
                expected_version=state.version,
            )

            unlocked = []
            if self.achievement_engine is not None:
                unlocked = self.achievement_engine.check_and_award_achievements(
                    athlete_id, updated, target.phase_order, uow=uow
                )

        logger.info(
            f"Athlete {athlete_id} promoted from {current['name']} to {target.name}",
            extra=log_fields(athlete_id=athlete_id, phase=target.name),
        )
        return {
            "new_phase": phase_to_dict(target),
            "previous_phase": current,
            "message": f"Congratulations! You advanced to the {target.display_name} phase.",
            "unlocked_achievements": unlocked,
        }
