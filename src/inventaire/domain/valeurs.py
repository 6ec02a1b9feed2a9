"""
Value objects monétaires et quantitatifs.

Argent et Quantité sont immuables (frozen=True) et comparés par valeur.
Toute opération retourne une nouvelle instance ; la validation a lieu
à la construction, donc une valeur invalide ne peut pas exister.

On travaille en Decimal : les flottants sont convertis via str()
pour que 0.11 vaille exactement Decimal("0.11").
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from inventaire.domain.erreurs import ErreurDeValidation

Nombre = Union[int, float, str, Decimal]

DEVISE_PAR_DÉFAUT = "IDR"


def en_decimal(valeur: Nombre) -> Decimal:
    """
    Convertit un nombre en Decimal sans les artefacts binaires des floats.
    NaN et les infinis sont rejetés : ils ne se comparent ni ne s'arrondissent.
    """
    if isinstance(valeur, bool):
        raise ErreurDeValidation(f"Valeur numérique invalide : {valeur!r}")
    if isinstance(valeur, Decimal):
        résultat = valeur
    else:
        try:
            résultat = Decimal(str(valeur))
        except InvalidOperation:
            raise ErreurDeValidation(f"Valeur numérique invalide : {valeur!r}") from None
    if not résultat.is_finite():
        raise ErreurDeValidation(f"Valeur numérique invalide : {valeur!r}")
    return résultat


@dataclass(frozen=True)
class Argent:
    """
    Value Object représentant un montant positif ou nul dans une devise.

    Les opérations entre deux Argent exigent la même devise.
    multiplier() arrondit à l'unité entière, demi vers le haut
    (10001 × 0.11 = 1100.11 → 1100 ; 50000 × 0.11 → 5500).
    """

    montant: Decimal
    devise: str = DEVISE_PAR_DÉFAUT

    def __post_init__(self) -> None:
        montant = en_decimal(self.montant)
        if montant < 0:
            raise ErreurDeValidation("Money amount cannot be negative")
        # frozen : on passe par object.__setattr__ pour normaliser
        object.__setattr__(self, "montant", montant)

    @classmethod
    def créer(cls, montant: Nombre, devise: str = DEVISE_PAR_DÉFAUT) -> Argent:
        return cls(en_decimal(montant), devise)

    @classmethod
    def zéro(cls, devise: str = DEVISE_PAR_DÉFAUT) -> Argent:
        return cls(Decimal(0), devise)

    def ajouter(self, autre: Argent) -> Argent:
        self._vérifier_devise(autre)
        return Argent(self.montant + autre.montant, self.devise)

    def soustraire(self, autre: Argent) -> Argent:
        """Soustrait ; un résultat négatif est rejeté, jamais ramené à zéro."""
        self._vérifier_devise(autre)
        return Argent(self.montant - autre.montant, self.devise)

    def multiplier(self, facteur: Nombre) -> Argent:
        produit = self.montant * en_decimal(facteur)
        return Argent(produit.quantize(Decimal(1), rounding=ROUND_HALF_UP), self.devise)

    def est_supérieur_à(self, autre: Argent) -> bool:
        self._vérifier_devise(autre)
        return self.montant > autre.montant

    def est_inférieur_à(self, autre: Argent) -> bool:
        self._vérifier_devise(autre)
        return self.montant < autre.montant

    def égale(self, autre: Argent) -> bool:
        """Égalité stricte : même montant ET même devise (pas de conversion)."""
        return self.montant == autre.montant and self.devise == autre.devise

    def _vérifier_devise(self, autre: Argent) -> None:
        if self.devise != autre.devise:
            raise ErreurDeValidation(
                f"Currency mismatch: {self.devise} vs {autre.devise}"
            )


@dataclass(frozen=True)
class Quantité:
    """Value Object représentant une quantité de stock, éventuellement fractionnaire."""

    valeur: Decimal

    def __post_init__(self) -> None:
        valeur = en_decimal(self.valeur)
        if valeur < 0:
            raise ErreurDeValidation("Quantity cannot be negative")
        object.__setattr__(self, "valeur", valeur)

    @classmethod
    def créer(cls, valeur: Nombre) -> Quantité:
        return cls(en_decimal(valeur))

    @classmethod
    def zéro(cls) -> Quantité:
        return cls(Decimal(0))

    def ajouter(self, autre: Quantité) -> Quantité:
        return Quantité(self.valeur + autre.valeur)

    def soustraire(self, autre: Quantité) -> Quantité:
        return Quantité(self.valeur - autre.valeur)

    def multiplier(self, facteur: Nombre) -> Quantité:
        return Quantité(self.valeur * en_decimal(facteur))

    def est_supérieur_à(self, autre: Quantité) -> bool:
        return self.valeur > autre.valeur

    def est_nulle(self) -> bool:
        return self.valeur == 0

    def égale(self, autre: Quantité) -> bool:
        return self.valeur == autre.valeur
