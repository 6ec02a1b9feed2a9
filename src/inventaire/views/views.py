"""
Views (lecture) pour le pattern CQRS.

Les listes de lots sont des lectures pures qui interrogent directement
les tables, sans charger d'agrégat : c'est le côté Query de CQRS.
Le résumé et la résolution de prix, qui portent de la logique métier,
passent en revanche par les agrégats via le repository.

Ordre FEFO commun : expiration croissante (sans expiration en dernier),
puis date de réception, puis identifiant.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select

from inventaire.adapters import orm
from inventaire.config import get_settings
from inventaire.domain import model
from inventaire.domain.erreurs import Introuvable
from inventaire.domain.tarifs import RésultatPrix
from inventaire.domain.valeurs import Nombre
from inventaire.service_layer import unit_of_work

lots = orm.batch_lots
products = orm.products
price_tiers = orm.price_tiers

_COLONNES_LOT = (
    lots.c.id,
    lots.c.product_id.label("produit_id"),
    lots.c.outlet_id.label("point_de_vente_id"),
    lots.c.batch_number.label("numéro_lot"),
    lots.c.quantity.label("quantité"),
    lots.c.cost_price.label("prix_de_revient"),
    lots.c.manufactured_at.label("fabriqué_le"),
    lots.c.expires_at.label("expire_le"),
    lots.c.received_at.label("reçu_le"),
    lots.c.notes,
    lots.c.status.label("statut"),
)

_ORDRE_FEFO = (
    lots.c.expires_at.is_(None),
    lots.c.expires_at,
    lots.c.received_at,
    lots.c.id,
)


def _lignes(uow: unit_of_work.AbstractUnitOfWork, requête) -> list[dict[str, Any]]:
    with uow:
        results = uow.session.execute(requête)
        return [dict(r._mapping) for r in results]


def lots_par_produit(
    produit_id: str, point_de_vente_id: str, uow: unit_of_work.AbstractUnitOfWork
) -> list[dict]:
    """Tous les lots du couple, quel que soit leur statut, en ordre FEFO."""
    return _lignes(
        uow,
        select(*_COLONNES_LOT)
        .where(lots.c.product_id == produit_id, lots.c.outlet_id == point_de_vente_id)
        .order_by(*_ORDRE_FEFO),
    )


def lots_actifs(
    produit_id: str, point_de_vente_id: str, uow: unit_of_work.AbstractUnitOfWork
) -> list[dict]:
    """Lots actifs non vides du couple, en ordre FEFO."""
    return _lignes(
        uow,
        select(*_COLONNES_LOT)
        .where(
            lots.c.product_id == produit_id,
            lots.c.outlet_id == point_de_vente_id,
            lots.c.status == model.ACTIF,
            lots.c.quantity > 0,
        )
        .order_by(*_ORDRE_FEFO),
    )


def _lots_avec_produit():
    return select(
        *_COLONNES_LOT,
        products.c.name.label("nom_produit"),
        products.c.sku,
    ).join(products, products.c.id == lots.c.product_id)


def lots_expirant(
    point_de_vente_id: str,
    uow: unit_of_work.AbstractUnitOfWork,
    jours: Optional[int] = None,
    maintenant: Optional[datetime] = None,
) -> list[dict]:
    """
    Lots actifs non vides du point de vente qui expirent entre maintenant
    (inclus) et maintenant + `jours` (inclus). Les lots déjà périmés
    relèvent de lots_expirés().
    """
    if jours is None:
        jours = get_settings().EXPIRY_WINDOW_DAYS
    maintenant = maintenant or datetime.now()
    return _lignes(
        uow,
        _lots_avec_produit()
        .where(
            lots.c.outlet_id == point_de_vente_id,
            lots.c.status == model.ACTIF,
            lots.c.quantity > 0,
            lots.c.expires_at.is_not(None),
            lots.c.expires_at >= maintenant,
            lots.c.expires_at <= maintenant + timedelta(days=jours),
        )
        .order_by(lots.c.expires_at, lots.c.received_at, lots.c.id),
    )


def lots_expirés(
    point_de_vente_id: str,
    uow: unit_of_work.AbstractUnitOfWork,
    maintenant: Optional[datetime] = None,
) -> list[dict]:
    """
    Lots encore `active` mais dont l'expiration est strictement passée :
    ce sont ceux que le prochain balayage marquera `expired`.
    """
    maintenant = maintenant or datetime.now()
    return _lignes(
        uow,
        _lots_avec_produit()
        .where(
            lots.c.outlet_id == point_de_vente_id,
            lots.c.status == model.ACTIF,
            lots.c.quantity > 0,
            lots.c.expires_at.is_not(None),
            lots.c.expires_at < maintenant,
        )
        .order_by(lots.c.expires_at, lots.c.received_at, lots.c.id),
    )


def résumé_lots(
    produit_id: str,
    point_de_vente_id: str,
    uow: unit_of_work.AbstractUnitOfWork,
    maintenant: Optional[datetime] = None,
    fenêtre_jours: Optional[int] = None,
) -> dict[str, Any]:
    """
    Résumé du stock par lots d'un couple (produit, point de vente).
    La fenêtre « expire bientôt » est la même que pour lots_expirant().
    """
    if fenêtre_jours is None:
        fenêtre_jours = get_settings().EXPIRY_WINDOW_DAYS
    maintenant = maintenant or datetime.now()
    with uow:
        stock = uow.stocks.get(produit_id, point_de_vente_id)
        if stock is None:
            stock = model.StockProduit(produit_id, point_de_vente_id)
        résumé = stock.résumé(maintenant, fenêtre_jours)
        return {
            "quantité_totale": résumé.quantité_totale,
            "lots_actifs": résumé.lots_actifs,
            "lots_expirés": résumé.lots_expirés,
            "expirant_bientôt": résumé.expirant_bientôt,
            "lots": [lot.instantané() for lot in résumé.lots],
        }


def paliers_par_produit(produit_id: str, uow: unit_of_work.AbstractUnitOfWork) -> list[dict]:
    """Paliers actifs d'un produit, par quantité minimale croissante."""
    return _lignes(
        uow,
        select(
            price_tiers.c.id,
            price_tiers.c.product_id.label("produit_id"),
            price_tiers.c.tier_name.label("nom"),
            price_tiers.c.min_quantity.label("quantité_min"),
            price_tiers.c.max_quantity.label("quantité_max"),
            price_tiers.c.price.label("prix"),
            price_tiers.c.discount_percent.label("remise_pourcentage"),
            price_tiers.c.is_active.label("actif"),
        )
        .where(price_tiers.c.product_id == produit_id, price_tiers.c.is_active.is_(True))
        .order_by(price_tiers.c.min_quantity, price_tiers.c.id),
    )


def résoudre_prix(
    produit_id: str, quantité: Nombre, uow: unit_of_work.AbstractUnitOfWork
) -> RésultatPrix:
    """Prix unitaire applicable pour `quantité` unités. Lève Introuvable si le produit n'existe pas."""
    with uow:
        produit = uow.produits.get(produit_id)
        if produit is None:
            raise Introuvable(f"Produit inconnu : {produit_id}")
        return produit.résoudre_prix(quantité)
