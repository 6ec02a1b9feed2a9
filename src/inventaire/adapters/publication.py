"""
Adapter pour la publication des events vers l'extérieur.

Ce module fournit une abstraction sur la diffusion des faits du
domaine (lot épuisé, rupture partielle, paliers remplacés) vers les
autres modules : cuisine, tableaux de bord temps réel, etc.
Le domaine ne connaît que cette interface.
"""

from __future__ import annotations

import abc
import json
import logging
from typing import Any

logger = logging.getLogger("inventaire.publication")


class AbstractPublication(abc.ABC):
    """Interface abstraite pour la publication d'events."""

    @abc.abstractmethod
    def publier(self, canal: str, message: dict[str, Any]) -> None:
        raise NotImplementedError


class JournalPublication(AbstractPublication):
    """
    Implémentation en processus : chaque message est écrit en JSON
    sur le logger `inventaire.publication`, qu'un collecteur de logs
    peut relayer.
    """

    def publier(self, canal: str, message: dict[str, Any]) -> None:
        logger.info(
            "%s %s",
            canal,
            json.dumps(message, default=str, ensure_ascii=False, sort_keys=True),
        )
