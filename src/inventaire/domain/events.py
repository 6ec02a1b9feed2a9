"""
Events du domaine.

Les events représentent des faits qui se sont produits dans le système.
Ils sont immuables et nommés au passé (quelque chose s'est passé).
"""

from dataclasses import dataclass
from decimal import Decimal


class Event:
    """Classe de base pour tous les events du domaine."""
    pass


@dataclass(frozen=True)
class LotÉpuisé(Event):
    """Une déduction a ramené la quantité d'un lot à zéro."""

    id_lot: str
    numéro_lot: str
    produit_id: str
    point_de_vente_id: str


@dataclass(frozen=True)
class StockInsuffisant(Event):
    """Les lots actifs ne suffisaient pas à couvrir une déduction."""

    produit_id: str
    point_de_vente_id: str
    demandé: Decimal
    manquant: Decimal


@dataclass(frozen=True)
class PaliersRemplacés(Event):
    """L'ensemble des paliers de prix d'un produit a été remplacé."""

    produit_id: str
    nombre: int
