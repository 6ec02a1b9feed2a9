"""
Point d'entrée du balayage des lots expirés.

    python -m inventaire.entrypoints.balayage            # planifié chaque jour
    python -m inventaire.entrypoints.balayage --run-once # une seule passe

Le point d'entrée est un thin adapter : il envoie la command
MarquerLotsExpirés au message bus, sans logique métier.
"""

from __future__ import annotations

import argparse
import logging

from inventaire.adapters import orm
from inventaire.adapters.planificateur import Planificateur
from inventaire.config import get_settings
from inventaire.domain import commands
from inventaire.journalisation import setup_logging
from inventaire.service_layer import bootstrap, messagebus, unit_of_work

logger = logging.getLogger(__name__)


def balayer(bus: messagebus.MessageBus) -> int:
    [nombre] = bus.handle(commands.MarquerLotsExpirés())
    logger.info("Balayage terminé : %d lot(s) expiré(s).", nombre)
    return nombre


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Marque les lots expirés.")
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Exécute le balayage une fois puis quitte.",
    )
    return parser.parse_args(argv)


def main(argv=None) -> None:
    setup_logging()
    args = parse_args(argv)
    settings = get_settings()
    bus = bootstrap.bootstrap()
    orm.metadata.create_all(unit_of_work.DEFAULT_ENGINE)

    if args.run_once:
        balayer(bus)
        return

    if not settings.SCHEDULER_ENABLED:
        logger.info("Planificateur désactivé par SCHEDULER_ENABLED.")
        return

    planificateur = Planificateur(
        timezone_mode=settings.SCHEDULER_TZ,
        poll_seconds=settings.SCHEDULER_POLL_SECONDS,
    )
    planificateur.ajouter_tâche_quotidienne(
        "lots-expires",
        settings.SWEEP_RUN_TIME,
        lambda: balayer(bus),
        jitter_seconds=settings.SCHEDULER_JITTER_SECONDS,
    )
    planificateur.démarrer()
    planificateur.attendre()


if __name__ == "__main__":
    main()
