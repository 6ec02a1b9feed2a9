"""
Modèle de domaine pour le suivi des lots de stock.

Un Lot est une réception physique de marchandise pour un couple
(produit, point de vente). Les lots d'un même couple sont regroupés
dans l'agrégat StockProduit, qui est la frontière de cohérence pour
les déductions FEFO (First-Expired-First-Out) et porte le numéro de
version utilisé pour le verrouillage optimiste.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from inventaire.domain import events
from inventaire.domain.erreurs import ErreurDeValidation
from inventaire.domain.valeurs import Argent, Nombre, Quantité, en_decimal

ACTIF = "active"
ÉPUISÉ = "depleted"
EXPIRÉ = "expired"
RAPPELÉ = "recalled"

STATUTS = (ACTIF, ÉPUISÉ, EXPIRÉ, RAPPELÉ)


def nouvel_identifiant() -> str:
    return uuid.uuid4().hex


class Lot:
    """
    Entité représentant un lot de stock.

    L'égalité et le hash sont basés sur l'identifiant, pas sur les
    attributs : la quantité d'un lot change au fil des déductions.
    """

    def __init__(
        self,
        id: str,
        produit_id: str,
        point_de_vente_id: str,
        numéro_lot: str,
        quantité: Nombre,
        reçu_le: datetime,
        prix_de_revient: Optional[Nombre] = None,
        fabriqué_le: Optional[datetime] = None,
        expire_le: Optional[datetime] = None,
        notes: Optional[str] = None,
        statut: str = ACTIF,
    ):
        self.id = id
        self.produit_id = produit_id
        self.point_de_vente_id = point_de_vente_id
        self.numéro_lot = numéro_lot
        self.quantité = Quantité.créer(quantité).valeur
        self.prix_de_revient = (
            None if prix_de_revient is None else Argent.créer(prix_de_revient).montant
        )
        self.fabriqué_le = fabriqué_le
        self.expire_le = expire_le
        self.reçu_le = reçu_le
        self.notes = notes
        self.statut = statut

    def __repr__(self) -> str:
        return f"<Lot {self.numéro_lot}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Lot):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __gt__(self, other: Lot) -> bool:
        """
        Ordre FEFO utilisé par sorted() :
        - expiration la plus proche d'abord, lots sans expiration en dernier
        - à expiration égale, le lot reçu le plus tôt d'abord
        - enfin l'identifiant, pour un ordre déterministe
        """
        return self._clé_fefo() > other._clé_fefo()

    def _clé_fefo(self) -> tuple:
        return (
            self.expire_le is None,
            self.expire_le or datetime.min,
            self.reçu_le,
            self.id,
        )

    @property
    def est_disponible(self) -> bool:
        """Un lot participe aux déductions s'il est actif et non vide."""
        return self.statut == ACTIF and self.quantité > 0

    def est_expiré(self, maintenant: datetime) -> bool:
        return self.expire_le is not None and self.expire_le < maintenant

    def expire_dans(self, maintenant: datetime, jours: int) -> bool:
        """Vrai si l'expiration tombe dans [maintenant, maintenant + jours]."""
        if self.expire_le is None:
            return False
        return maintenant <= self.expire_le <= maintenant + timedelta(days=jours)

    def instantané(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "produit_id": self.produit_id,
            "point_de_vente_id": self.point_de_vente_id,
            "numéro_lot": self.numéro_lot,
            "quantité": self.quantité,
            "prix_de_revient": self.prix_de_revient,
            "fabriqué_le": self.fabriqué_le,
            "expire_le": self.expire_le,
            "reçu_le": self.reçu_le,
            "notes": self.notes,
            "statut": self.statut,
        }


@dataclass(frozen=True)
class DéductionLot:
    id_lot: str
    numéro_lot: str
    déduit: Decimal
    restant: Decimal


@dataclass(frozen=True)
class RésultatDéduction:
    """
    Résultat d'une déduction FEFO.

    `déduit` peut être inférieur à la quantité demandée : la rupture
    partielle est une situation métier normale, pas une erreur.
    """

    déduit: Decimal
    lots: list[DéductionLot] = field(default_factory=list)


@dataclass(frozen=True)
class RésuméLots:
    quantité_totale: Decimal
    lots_actifs: int
    lots_expirés: int
    expirant_bientôt: int
    lots: list[Lot] = field(default_factory=list)


class StockProduit:
    """
    Agrégat racine : tous les lots d'un produit dans un point de vente.

    Toute mutation de l'ensemble des lots incrémente numéro_version ;
    l'ORM s'en sert comme compteur de verrouillage optimiste, ce qui
    fait échouer le commit d'une déduction concurrente sur le même couple.
    """

    def __init__(
        self,
        produit_id: str,
        point_de_vente_id: str,
        lots: Optional[list[Lot]] = None,
        numéro_version: int = 0,
    ):
        self.produit_id = produit_id
        self.point_de_vente_id = point_de_vente_id
        self.lots = lots or []
        self.numéro_version = numéro_version
        self.événements: list[events.Event] = []

    def __repr__(self) -> str:
        return f"<StockProduit {self.produit_id}@{self.point_de_vente_id}>"

    def lots_ordonnés(self) -> list[Lot]:
        return sorted(self.lots)

    def lots_disponibles(self) -> list[Lot]:
        return [lot for lot in self.lots_ordonnés() if lot.est_disponible]

    def lot(self, id_lot: str) -> Lot:
        return next(l for l in self.lots if l.id == id_lot)

    def recevoir(self, lot: Lot) -> None:
        if lot.statut not in STATUTS:
            raise ErreurDeValidation(f"Statut de lot inconnu : {lot.statut}")
        self.lots.append(lot)
        self.numéro_version += 1

    def retirer(self, id_lot: str) -> None:
        self.lots.remove(self.lot(id_lot))
        self.numéro_version += 1

    def modifier_lot(self, id_lot: str, **changements: Any) -> Lot:
        """
        Modification partielle : seuls les champs passés sont modifiés.
        expire_le=None efface la date d'expiration.
        """
        lot = self.lot(id_lot)
        if "quantité" in changements:
            lot.quantité = Quantité.créer(changements["quantité"]).valeur
        if "prix_de_revient" in changements:
            prix = changements["prix_de_revient"]
            lot.prix_de_revient = None if prix is None else Argent.créer(prix).montant
        if "statut" in changements:
            if changements["statut"] not in STATUTS:
                raise ErreurDeValidation(
                    f"Statut de lot inconnu : {changements['statut']}"
                )
            lot.statut = changements["statut"]
        if "expire_le" in changements:
            lot.expire_le = changements["expire_le"]
        if "notes" in changements:
            lot.notes = changements["notes"]
        self.numéro_version += 1
        return lot

    def déduire_fifo(self, quantité: Nombre) -> RésultatDéduction:
        """
        Déduit `quantité` des lots disponibles en ordre FEFO.

        Chaque lot cède min(disponible, restant) ; un lot ramené à zéro
        passe en `depleted`. Si les lots s'épuisent avant la fin, on
        retourne ce qui a pu être déduit et on émet StockInsuffisant.
        """
        demandé = Quantité.créer(quantité)
        restant = demandé
        détails: list[DéductionLot] = []

        for lot in self.lots_disponibles():
            if restant.est_nulle():
                break
            disponible = Quantité.créer(lot.quantité)
            prélevé = restant if disponible.est_supérieur_à(restant) else disponible
            nouvelle = disponible.soustraire(prélevé)

            lot.quantité = nouvelle.valeur
            if nouvelle.est_nulle():
                lot.statut = ÉPUISÉ
                self.événements.append(
                    events.LotÉpuisé(
                        id_lot=lot.id,
                        numéro_lot=lot.numéro_lot,
                        produit_id=self.produit_id,
                        point_de_vente_id=self.point_de_vente_id,
                    )
                )
            détails.append(
                DéductionLot(
                    id_lot=lot.id,
                    numéro_lot=lot.numéro_lot,
                    déduit=prélevé.valeur,
                    restant=nouvelle.valeur,
                )
            )
            restant = restant.soustraire(prélevé)

        if détails:
            self.numéro_version += 1
        if not restant.est_nulle():
            self.événements.append(
                events.StockInsuffisant(
                    produit_id=self.produit_id,
                    point_de_vente_id=self.point_de_vente_id,
                    demandé=demandé.valeur,
                    manquant=restant.valeur,
                )
            )
        return RésultatDéduction(
            déduit=demandé.soustraire(restant).valeur, lots=détails
        )

    def résumé(self, maintenant: datetime, fenêtre_jours: int) -> RésuméLots:
        """
        Agrège les lots du couple. Seuls les lots actifs non vides comptent ;
        parmi eux, un lot est soit expiré (date dépassée), soit « bientôt »
        (expiration dans la fenêtre), soit ni l'un ni l'autre.
        """
        total = Quantité.zéro()
        actifs = expirés = bientôt = 0
        for lot in self.lots:
            if not lot.est_disponible:
                continue
            total = total.ajouter(Quantité.créer(lot.quantité))
            actifs += 1
            if lot.est_expiré(maintenant):
                expirés += 1
            elif lot.expire_dans(maintenant, fenêtre_jours):
                bientôt += 1
        return RésuméLots(
            quantité_totale=total.valeur,
            lots_actifs=actifs,
            lots_expirés=expirés,
            expirant_bientôt=bientôt,
            lots=self.lots_ordonnés(),
        )


def créer_lot(
    produit_id: str,
    point_de_vente_id: str,
    numéro_lot: str,
    quantité: Nombre,
    reçu_le: datetime,
    **optionnels: Any,
) -> Lot:
    """Fabrique un lot actif avec un nouvel identifiant ; rejette une quantité négative."""
    if en_decimal(quantité) < 0:
        raise ErreurDeValidation("Quantity cannot be negative")
    return Lot(
        id=nouvel_identifiant(),
        produit_id=produit_id,
        point_de_vente_id=point_de_vente_id,
        numéro_lot=numéro_lot,
        quantité=quantité,
        reçu_le=reçu_le,
        **optionnels,
    )
