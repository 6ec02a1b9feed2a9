"""
Modèle de domaine pour les paliers de prix (prix dégressifs par quantité).

Un Produit porte son prix de base et ses paliers. Pour une quantité
demandée, on retient le palier actif dont la quantité minimale est la
plus haute sans dépasser la demande ; si sa borne haute exclut la
quantité, on retombe sur le prix de base.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from inventaire.domain import events
from inventaire.domain.erreurs import ErreurDeValidation
from inventaire.domain.valeurs import Argent, Nombre, Quantité, en_decimal


class PalierDePrix:
    """
    Entité représentant un palier de prix.

    La plage [quantité_min, quantité_max] est validée à la construction
    et à chaque modification : un palier mal formé est rejeté plutôt
    qu'ignoré silencieusement lors de la résolution.
    """

    def __init__(
        self,
        id: str,
        produit_id: str,
        nom: str,
        quantité_min: Nombre,
        prix: Nombre,
        quantité_max: Optional[Nombre] = None,
        remise_pourcentage: Optional[Nombre] = None,
        actif: bool = True,
    ):
        self.id = id
        self.produit_id = produit_id
        self.nom = nom
        self.quantité_min = Quantité.créer(quantité_min).valeur
        self.quantité_max = None if quantité_max is None else en_decimal(quantité_max)
        self.prix = Argent.créer(prix).montant
        self.remise_pourcentage = (
            None if remise_pourcentage is None else en_decimal(remise_pourcentage)
        )
        self.actif = actif
        self.valider()

    def __repr__(self) -> str:
        return f"<PalierDePrix {self.nom} [{self.quantité_min}, {self.quantité_max}]>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PalierDePrix):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def valider(self) -> None:
        if self.quantité_min < 0:
            raise ErreurDeValidation("La quantité minimale ne peut pas être négative")
        if self.quantité_max is not None and self.quantité_max < self.quantité_min:
            raise ErreurDeValidation(
                f"Palier {self.nom} : quantité max {self.quantité_max}"
                f" inférieure à la quantité min {self.quantité_min}"
            )
        if self.remise_pourcentage is not None and not (
            0 <= self.remise_pourcentage <= 100
        ):
            raise ErreurDeValidation("La remise doit être comprise entre 0 et 100 %")

    def couvre(self, quantité: Decimal) -> bool:
        return self.quantité_max is None or quantité <= self.quantité_max

    def instantané(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "produit_id": self.produit_id,
            "nom": self.nom,
            "quantité_min": self.quantité_min,
            "quantité_max": self.quantité_max,
            "prix": self.prix,
            "remise_pourcentage": self.remise_pourcentage,
            "actif": self.actif,
        }


@dataclass(frozen=True)
class RésultatPrix:
    prix_unitaire: Argent
    nom_palier: Optional[str]
    prix_original: Argent
    économie: Decimal
    économie_pourcentage: Decimal


class Produit:
    """
    Agrégat racine pour la tarification d'un produit.

    Le remplacement complet des paliers passe par cet agrégat pour
    être persisté dans une seule unité de travail.
    """

    def __init__(
        self,
        id: str,
        nom: str,
        sku: str,
        prix_de_base: Nombre,
        devise: str = "IDR",
        paliers: Optional[list[PalierDePrix]] = None,
    ):
        self.id = id
        self.nom = nom
        self.sku = sku
        self.prix_de_base = Argent.créer(prix_de_base, devise).montant
        self.devise = devise
        self.paliers = paliers or []
        self.événements: list[events.Event] = []

    def __repr__(self) -> str:
        return f"<Produit {self.sku}>"

    def paliers_actifs(self) -> list[PalierDePrix]:
        return sorted(
            (p for p in self.paliers if p.actif),
            key=lambda p: (p.quantité_min, p.id),
        )

    def palier(self, id_palier: str) -> PalierDePrix:
        return next(p for p in self.paliers if p.id == id_palier)

    def ajouter_palier(self, palier: PalierDePrix) -> None:
        palier.valider()
        self.paliers.append(palier)

    def retirer_palier(self, id_palier: str) -> None:
        self.paliers.remove(self.palier(id_palier))

    def modifier_palier(self, id_palier: str, **changements: Any) -> PalierDePrix:
        """
        Modification partielle, puis revalidation de la plage complète.
        Les valeurs sont vérifiées avant d'être appliquées : en cas
        d'erreur le palier reste intact.
        """
        palier = self.palier(id_palier)
        valeurs = palier.instantané()
        valeurs.update(changements)
        candidat = PalierDePrix(
            id=palier.id,
            produit_id=palier.produit_id,
            nom=valeurs["nom"],
            quantité_min=valeurs["quantité_min"],
            prix=valeurs["prix"],
            quantité_max=valeurs["quantité_max"],
            remise_pourcentage=valeurs["remise_pourcentage"],
            actif=valeurs["actif"],
        )
        palier.nom = candidat.nom
        palier.quantité_min = candidat.quantité_min
        palier.quantité_max = candidat.quantité_max
        palier.prix = candidat.prix
        palier.remise_pourcentage = candidat.remise_pourcentage
        palier.actif = candidat.actif
        return palier

    def remplacer_paliers(self, nouveaux: list[PalierDePrix]) -> None:
        for palier in nouveaux:
            palier.valider()
        self.paliers = list(nouveaux)
        self.événements.append(
            events.PaliersRemplacés(produit_id=self.id, nombre=len(nouveaux))
        )

    def résoudre_prix(self, quantité: Nombre) -> RésultatPrix:
        """
        Choisit le palier actif de quantité_min la plus haute <= quantité
        (à égalité, le plus petit identifiant). Il s'applique si sa borne
        haute couvre la quantité ; sinon, prix de base sans économie.
        """
        demandée = Quantité.créer(quantité).valeur
        base = Argent.créer(self.prix_de_base, self.devise)

        candidats = sorted(
            (p for p in self.paliers_actifs() if p.quantité_min <= demandée),
            key=lambda p: (-p.quantité_min, p.id),
        )
        candidat = candidats[0] if candidats else None
        if candidat is None or not candidat.couvre(demandée):
            return RésultatPrix(
                prix_unitaire=base,
                nom_palier=None,
                prix_original=base,
                économie=Decimal(0),
                économie_pourcentage=Decimal(0),
            )

        prix = Argent.créer(candidat.prix, self.devise)
        économie = base.montant - prix.montant
        pourcentage = Decimal(0)
        if base.montant > 0:
            pourcentage = (économie / base.montant * 100).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )
        return RésultatPrix(
            prix_unitaire=prix,
            nom_palier=candidat.nom,
            prix_original=base,
            économie=économie,
            économie_pourcentage=pourcentage,
        )
