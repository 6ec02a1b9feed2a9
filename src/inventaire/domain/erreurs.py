"""
Exceptions du domaine.

Deux familles d'erreurs seulement :
- ErreurDeValidation : une valeur viole un invariant (montant négatif,
  devise différente, palier mal formé...)
- Introuvable : l'entité référencée n'existe pas (lot, palier, produit)

Une rupture de stock partielle n'est PAS une erreur : elle est signalée
par la valeur de retour de la déduction et par un event.
"""


class ErreurDeValidation(Exception):
    """Levée quand une valeur fournie viole un invariant du domaine."""
    pass


class Introuvable(Exception):
    """Levée quand l'entité référencée n'existe pas."""
    pass
