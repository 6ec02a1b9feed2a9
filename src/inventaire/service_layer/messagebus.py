"""
Message bus de l'inventaire.

Une command (réception de lot, déduction FEFO, balayage...) part vers
son unique handler ; les events que les agrégats ont accumulés pendant
la transaction sont ensuite ramassés par le Unit of Work et rejoués
dans la même file, jusqu'à ce qu'elle soit vide.

Une erreur de command remonte à l'appelant. Une erreur d'event est
loggée puis ignorée : un consommateur en aval ne peut jamais annuler
une mutation déjà validée (lot déduit, paliers remplacés...).
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Union

from inventaire.domain import commands, events
from inventaire.service_layer import unit_of_work

logger = logging.getLogger(__name__)

Message = Union[commands.Command, events.Event]


class MessageBus:
    """
    Les handlers reçus ici sont déjà câblés par le bootstrap :
    ils n'attendent plus que le message.
    """

    def __init__(
        self,
        uow: unit_of_work.AbstractUnitOfWork,
        event_handlers: dict[type[events.Event], list[Callable[[events.Event], None]]],
        command_handlers: dict[type[commands.Command], Callable[[commands.Command], Any]],
    ):
        self.uow = uow
        self.event_handlers = event_handlers
        self.command_handlers = command_handlers
        self.queue: deque[Message] = deque()

    def handle(self, message: Message) -> list[Any]:
        """
        Traite un message puis, en cascade, tous les events qui en découlent.

        Retourne les résultats des commands traitées, dans l'ordre
        (en pratique un seul élément : celui de la command initiale).
        """
        self.queue = deque([message])
        résultats: list[Any] = []
        while self.queue:
            suivant = self.queue.popleft()
            if isinstance(suivant, commands.Command):
                résultats.append(self._traiter_command(suivant))
            elif isinstance(suivant, events.Event):
                self._traiter_event(suivant)
            else:
                raise TypeError(f"{suivant!r} n'est ni une command ni un event")
        return résultats

    def _traiter_command(self, command: commands.Command) -> Any:
        try:
            handler = self.command_handlers[type(command)]
        except KeyError:
            raise ValueError(
                f"Aucun handler pour la command {type(command).__name__}"
            ) from None
        logger.debug("Command %s", command)
        résultat = handler(command)
        self.queue.extend(self.uow.collect_new_events())
        return résultat

    def _traiter_event(self, event: events.Event) -> None:
        for handler in self.event_handlers.get(type(event), []):
            logger.debug("Event %s", event)
            try:
                handler(event)
            except Exception:
                logger.exception("Erreur lors du traitement de l'event %s", event)
                continue
            self.queue.extend(self.uow.collect_new_events())
