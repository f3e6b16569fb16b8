import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from orchestrator.core.database import session_scope
from orchestrator.core.exceptions import TransientObservationError
from orchestrator.models.deployment import Deployment, DeploymentStatus
from orchestrator.services.deployment_state_machine import DeploymentStateMachine
from orchestrator.services.rollout_tracker import RolloutTracker, next_poll_interval

logger = logging.getLogger(__name__)


class RolloutWorker:
    """Boucle de réconciliation en arrière-plan.

    À chaque tick : expiration des builds et rollouts trop longs, admission des
    déploiements en file d'attente, puis observation des rollouts dont le prochain
    polling est dû. L'état de planification n'existe qu'en mémoire et se reconstruit
    depuis la base après un redémarrage.
    """

    def __init__(
            self,
            session_factory: Callable[[], Session],
            state_machine_factory: Callable[[Session], DeploymentStateMachine],
            tracker: RolloutTracker,
            tick_seconds: float = 0.5,
            settle_observations: int = 2,
            build_timeout: float = 1800,
            rollout_timeout: float = 900,
            poll_fresh: float = 0.5,
            poll_scheduled: float = 2.0,
            poll_stable: float = 30.0,
            backoff_max: float = 60.0
    ):
        self.session_factory = session_factory
        self.state_machine_factory = state_machine_factory
        self.tracker = tracker
        self.tick_seconds = tick_seconds
        self.settle_observations = settle_observations
        self.build_timeout = build_timeout
        self.rollout_timeout = rollout_timeout
        self.poll_fresh = poll_fresh
        self.poll_scheduled = poll_scheduled
        self.poll_stable = poll_stable
        self.backoff_max = backoff_max

        self.running = False
        self._task = None
        self._next_poll: Dict[int, float] = {}
        self._ready_streak: Dict[int, int] = {}
        self._backoff: Dict[int, float] = {}
        self.last_tick: Optional[datetime] = None

    async def start(self):
        if self.running:
            return

        self.running = True
        logger.info("Worker de rollout démarré")

        while self.running:
            try:
                await self.tick()
                await asyncio.sleep(self.tick_seconds)
            except asyncio.CancelledError:
                logger.info("Worker de rollout annulé")
                break
            except Exception as e:
                logger.exception(f"Erreur dans le worker de rollout: {e}")
                if self.running:
                    await asyncio.sleep(self.tick_seconds * 10)

        logger.info("Worker de rollout arrêté")

    def stop(self):
        self.running = False

    def is_healthy(self) -> bool:
        return self.running and self._task is not None and not self._task.done()

    @property
    def tracked_count(self) -> int:
        return len(self._next_poll)

    async def tick(self) -> List[int]:
        """Un passage de réconciliation ; retourne les déploiements observés"""
        due = await asyncio.to_thread(self.reconcile, time.monotonic())
        if due:
            # Les apps sont indépendantes : une observation par thread
            await asyncio.gather(*(asyncio.to_thread(self.observe, deployment_id) for deployment_id in due))
        self.last_tick = datetime.utcnow()
        return due

    def reconcile(self, now: float) -> List[int]:
        with session_scope(self.session_factory) as db:
            state_machine = self.state_machine_factory(db)
            repo = state_machine.deployments

            for deployment in repo.get_by_status(DeploymentStatus.BUILDING):
                if self._age(deployment) > self.build_timeout:
                    state_machine.expire(deployment, f"Délai de build dépassé ({int(self.build_timeout)}s)")

            tracked = []
            for deployment in repo.get_by_status(DeploymentStatus.DEPLOYING):
                if self._age(deployment) > self.rollout_timeout:
                    state_machine.expire(deployment, f"Délai de rollout dépassé ({int(self.rollout_timeout)}s)")
                    continue
                tracked.append(deployment.id)

            # Statut en direct du déploiement actif
            for deployment in repo.get_by_status(DeploymentStatus.COMPLETE):
                if deployment.app.active_deployment_id == deployment.id:
                    tracked.append(deployment.id)

            for app_id in sorted({d.app_id for d in repo.get_by_status(DeploymentStatus.QUEUED)}):
                state_machine.promote_queued(app_id)

        self._forget_except(set(tracked))
        return [deployment_id for deployment_id in tracked if self._next_poll.get(deployment_id, 0) <= now]

    def observe(self, deployment_id: int) -> None:
        with session_scope(self.session_factory) as db:
            state_machine = self.state_machine_factory(db)
            deployment = db.get(Deployment, deployment_id)
            if deployment is None or deployment.status not in (DeploymentStatus.DEPLOYING, DeploymentStatus.COMPLETE):
                return

            config = state_machine.box.open_config(deployment.config)
            try:
                pod_status = self.tracker.observe(deployment.app, deployment, config)
            except TransientObservationError as e:
                delay = min(max(self._backoff.get(deployment_id, self.poll_fresh) * 2, self.poll_fresh),
                            self.backoff_max)
                self._backoff[deployment_id] = delay
                self._next_poll[deployment_id] = time.monotonic() + delay
                logger.warning(f"Déploiement {deployment_id}: {e}, nouvel essai dans {delay:.1f}s")
                return

            self._backoff.pop(deployment_id, None)
            streak = self._ready_streak.get(deployment_id, 0) + 1 if pod_status.is_ready else 0
            self._ready_streak[deployment_id] = streak
            settled = streak >= self.settle_observations

            state_machine.apply_pod_status(deployment, pod_status, settled=settled)

            if pod_status.is_ready and not settled:
                interval = self.poll_fresh
            else:
                interval = next_poll_interval(pod_status, self.poll_fresh, self.poll_scheduled, self.poll_stable)
            self._next_poll[deployment_id] = time.monotonic() + interval

    def _forget_except(self, live: set) -> None:
        for schedule in (self._next_poll, self._ready_streak, self._backoff):
            for deployment_id in [key for key in schedule if key not in live]:
                schedule.pop(deployment_id, None)

    @staticmethod
    def _age(deployment: Deployment) -> float:
        started = deployment.status_changed_at or deployment.created_at
        return (datetime.utcnow() - started).total_seconds()
