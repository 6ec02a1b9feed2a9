"""
Planificateur de tâches quotidiennes.

Un thread de fond se réveille toutes les `poll_seconds` secondes et
exécute, dans ce même thread, les tâches dont l'heure est passée.
L'échec d'une exécution est loggé ; la tâche reste planifiée pour le
lendemain.
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

_EXCEPTIONS_TÂCHE = (OSError, RuntimeError, ValueError, SQLAlchemyError)


def lire_heure(valeur: str) -> time:
    """Lit une heure au format HH:MM ou HH:MM:SS."""
    morceaux = [int(m) for m in valeur.strip().split(":")]
    if not 2 <= len(morceaux) <= 3:
        raise ValueError("L'heure doit être au format HH:MM")
    return time(*morceaux)


def prochaine_exécution(heure: time, *, tz: Optional[timezone] = None) -> datetime:
    maintenant = datetime.now(tz=tz)
    aujourdhui = datetime.combine(maintenant.date(), heure, tzinfo=maintenant.tzinfo)
    if aujourdhui <= maintenant:
        return aujourdhui + timedelta(days=1)
    return aujourdhui


@dataclass
class TâchePlanifiée:
    nom: str
    heure: time
    func: Callable[[], object]
    jitter_seconds: int = 0
    prochaine: Optional[datetime] = None

    def est_due(self, maintenant: datetime) -> bool:
        return self.prochaine is not None and maintenant >= self.prochaine

    def replanifier(self, tz: Optional[timezone]) -> None:
        self.prochaine = prochaine_exécution(self.heure, tz=tz)
        if self.jitter_seconds:
            self.prochaine += timedelta(seconds=secrets.randbelow(self.jitter_seconds + 1))

    def exécuter(self) -> None:
        logger.info("Exécution de la tâche planifiée : %s", self.nom)
        try:
            self.func()
        except _EXCEPTIONS_TÂCHE:
            logger.exception("Échec de la tâche planifiée : %s", self.nom)


class Planificateur:
    def __init__(self, *, timezone_mode: str = "local", poll_seconds: int = 1):
        self.tâches: list[TâchePlanifiée] = []
        self._thread: Optional[threading.Thread] = None
        self._arrêt = threading.Event()
        self._poll_seconds = max(1, int(poll_seconds))
        self._tz = timezone.utc if timezone_mode.lower() == "utc" else None

    def ajouter_tâche_quotidienne(
        self,
        nom: str,
        heure: str,
        func: Callable[[], object],
        *,
        jitter_seconds: int = 0,
    ) -> TâchePlanifiée:
        tâche = TâchePlanifiée(
            nom=nom,
            heure=lire_heure(heure),
            func=func,
            jitter_seconds=max(0, int(jitter_seconds)),
        )
        tâche.replanifier(self._tz)
        self.tâches.append(tâche)
        return tâche

    def démarrer(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._arrêt.clear()
        self._thread = threading.Thread(target=self._boucle, name="planificateur", daemon=True)
        self._thread.start()
        logger.info("Planificateur démarré avec %d tâche(s).", len(self.tâches))

    def arrêter(self) -> None:
        if not self._thread:
            return
        self._arrêt.set()
        self._thread.join(timeout=self._poll_seconds + 1)
        self._thread = None
        logger.info("Planificateur arrêté.")

    def attendre(self) -> None:
        """Bloque jusqu'à l'arrêt (Ctrl-C compris)."""
        try:
            while self._thread and self._thread.is_alive():
                self._thread.join(timeout=self._poll_seconds)
        except KeyboardInterrupt:
            self.arrêter()

    def exécuter_en_attente(self) -> None:
        maintenant = datetime.now(tz=self._tz)
        for tâche in self.tâches:
            if tâche.est_due(maintenant):
                tâche.exécuter()
                tâche.replanifier(self._tz)

    def _boucle(self) -> None:
        while not self._arrêt.is_set():
            self.exécuter_en_attente()
            self._arrêt.wait(self._poll_seconds)
