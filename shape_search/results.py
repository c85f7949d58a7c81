from __future__ import annotations

from dataclasses import dataclass

from .experiment import ExperimentSession, ExperimentState, TrialOutcome


@dataclass(frozen=True, slots=True)
class ExperimentResult:
    """Persistable summary of a (possibly unfinished) experiment run."""

    seed: int
    trials_planned: int
    trials_completed: int
    finished: bool

    score: float
    live_score: float
    trial_score: float

    hits: int
    misses: int
    targets: int
    hit_rate: float
    mean_trialtime_s: float | None
    mean_airtime_s: float | None

    outcomes: list[TrialOutcome]


def experiment_result_from_session(session: ExperimentSession) -> ExperimentResult:
    outcomes = session.outcomes()
    hits = sum(o.stats.hits for o in outcomes)
    misses = sum(o.stats.misses for o in outcomes)
    targets = sum(o.stats.targets for o in outcomes)

    mean_trialtime: float | None
    mean_airtime: float | None
    if not outcomes:
        mean_trialtime = None
        mean_airtime = None
    else:
        mean_trialtime = sum(o.stats.trialtime for o in outcomes) / len(outcomes)
        mean_airtime = sum(o.stats.airtime for o in outcomes) / len(outcomes)

    return ExperimentResult(
        seed=int(session.seed),
        trials_planned=int(session.trials),
        trials_completed=len(outcomes),
        finished=session.state is ExperimentState.THANK_YOU,
        score=float(session.score),
        live_score=float(session.live_score),
        trial_score=float(session.trial_score),
        hits=hits,
        misses=misses,
        targets=targets,
        hit_rate=0.0 if targets == 0 else hits / targets,
        mean_trialtime_s=mean_trialtime,
        mean_airtime_s=mean_airtime,
        outcomes=outcomes,
    )
