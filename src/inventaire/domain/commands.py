"""
Commands du domaine.

Les commands représentent des intentions : quelque chose que
le système doit faire. Contrairement aux events (faits passés),
les commands sont des demandes qui peuvent échouer.

Pour les modifications partielles, NON_FOURNI distingue
« champ absent » de « champ explicitement mis à None »
(ex. effacer la date d'expiration d'un lot).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union


class _NonFourni:
    def __repr__(self) -> str:
        return "NON_FOURNI"


NON_FOURNI: Any = _NonFourni()

Nombre = Union[int, float, str, Decimal]


class Command:
    """Classe de base pour toutes les commands."""
    pass


@dataclass(frozen=True)
class CréerProduit(Command):
    """Enregistre un produit et son prix de base."""

    id: str
    nom: str
    sku: str
    prix_de_base: Nombre
    devise: str = "IDR"


@dataclass(frozen=True)
class CréerLot(Command):
    """Réception d'un nouveau lot de stock pour un produit dans un point de vente."""

    produit_id: str
    point_de_vente_id: str
    numéro_lot: str
    quantité: Nombre
    prix_de_revient: Optional[Nombre] = None
    fabriqué_le: Optional[datetime] = None
    expire_le: Optional[datetime] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ModifierLot(Command):
    """Modification partielle d'un lot : seuls les champs fournis changent."""

    id_lot: str
    quantité: Any = NON_FOURNI
    prix_de_revient: Any = NON_FOURNI
    expire_le: Any = NON_FOURNI
    notes: Any = NON_FOURNI
    statut: Any = NON_FOURNI


@dataclass(frozen=True)
class SupprimerLot(Command):
    id_lot: str


@dataclass(frozen=True)
class DéduireFIFO(Command):
    """Déduit une quantité des lots actifs, les plus proches de l'expiration d'abord."""

    produit_id: str
    point_de_vente_id: str
    quantité: Nombre


@dataclass(frozen=True)
class MarquerLotsExpirés(Command):
    """Balayage : passe en `expired` tous les lots actifs dont la date est dépassée."""
    pass


@dataclass(frozen=True)
class NouveauPalier:
    """Description d'un palier dans une demande de création ou de remplacement."""

    nom: str
    quantité_min: Nombre
    prix: Nombre
    quantité_max: Optional[Nombre] = None
    remise_pourcentage: Optional[Nombre] = None
    actif: bool = True


@dataclass(frozen=True)
class CréerPalier(Command):
    produit_id: str
    palier: NouveauPalier


@dataclass(frozen=True)
class ModifierPalier(Command):
    """Modification partielle d'un palier ; quantité_max=None supprime la borne."""

    id_palier: str
    nom: Any = NON_FOURNI
    quantité_min: Any = NON_FOURNI
    quantité_max: Any = NON_FOURNI
    prix: Any = NON_FOURNI
    remise_pourcentage: Any = NON_FOURNI
    actif: Any = NON_FOURNI


@dataclass(frozen=True)
class SupprimerPalier(Command):
    id_palier: str


@dataclass(frozen=True)
class RemplacerPaliers(Command):
    """Remplace d'un bloc tous les paliers d'un produit (liste vide = aucun palier)."""

    produit_id: str
    paliers: tuple[NouveauPalier, ...] = field(default_factory=tuple)
