"""
Bootstrap : assemblage de l'application (Composition Root).

Ce module construit le message bus avec toutes ses dépendances.
C'est le seul endroit qui connaît les implémentations concrètes
(SQLAlchemy, publication, horloge système, réglages).
"""

from __future__ import annotations

import functools
import inspect
from datetime import datetime
from typing import Any, Callable

from inventaire.adapters import orm, publication
from inventaire.config import Settings, get_settings
from inventaire.domain import commands, events
from inventaire.service_layer import handlers, messagebus, unit_of_work


def bootstrap(
    start_orm: bool = True,
    uow: unit_of_work.AbstractUnitOfWork | None = None,
    publication_adapter: publication.AbstractPublication | None = None,
    horloge: Callable[[], datetime] | None = None,
    settings: Settings | None = None,
    **extra_dependencies: Any,
) -> messagebus.MessageBus:
    """
    Construit et retourne un MessageBus configuré.

    En production, utilise les implémentations concrètes.
    En test, on injecte des fakes (uow, publication, horloge figée).
    """
    if settings is None:
        settings = get_settings()

    if start_orm:
        orm.start_mappers()

    if uow is None:
        uow = unit_of_work.SqlAlchemyUnitOfWork()

    if publication_adapter is None:
        publication_adapter = publication.JournalPublication()

    dépendances: dict[str, Any] = {
        "uow": uow,
        "publication": publication_adapter,
        "horloge": horloge or datetime.now,
        "max_tentatives": max(1, settings.DEDUCTION_MAX_ATTEMPTS),
        **extra_dependencies,
    }

    return messagebus.MessageBus(
        uow=uow,
        event_handlers={
            type_event: [injecter_dépendances(h, dépendances) for h in liste]
            for type_event, liste in EVENT_HANDLERS.items()
        },
        command_handlers={
            type_command: injecter_dépendances(h, dépendances)
            for type_command, h in COMMAND_HANDLERS.items()
        },
    )


def injecter_dépendances(handler: Callable, dépendances: dict[str, Any]) -> Callable:
    """
    Lie à l'avance les paramètres du handler trouvés par leur nom dans
    `dépendances` ; le premier paramètre (le message) reste libre.
    """
    paramètres = list(inspect.signature(handler).parameters)[1:]
    liées = {nom: dépendances[nom] for nom in paramètres if nom in dépendances}
    return functools.partial(handler, **liées)


# --- Routage des messages vers les handlers ---

EVENT_HANDLERS: dict[type[events.Event], list[Callable]] = {
    events.LotÉpuisé: [handlers.publier_lot_épuisé],
    events.StockInsuffisant: [handlers.publier_stock_insuffisant],
    events.PaliersRemplacés: [handlers.publier_paliers_remplacés],
}

COMMAND_HANDLERS: dict[type[commands.Command], Callable] = {
    commands.CréerProduit: handlers.créer_produit,
    commands.CréerLot: handlers.créer_lot,
    commands.ModifierLot: handlers.modifier_lot,
    commands.SupprimerLot: handlers.supprimer_lot,
    commands.DéduireFIFO: handlers.déduire_fifo,
    commands.MarquerLotsExpirés: handlers.marquer_lots_expirés,
    commands.CréerPalier: handlers.créer_palier,
    commands.ModifierPalier: handlers.modifier_palier,
    commands.SupprimerPalier: handlers.supprimer_palier,
    commands.RemplacerPaliers: handlers.remplacer_paliers,
}
