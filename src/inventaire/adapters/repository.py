"""
Pattern Repository.

Le repository fournit une abstraction sur la couche de persistance.
Il expose une interface de type collection (add, get) qui masque
les détails de l'accès aux données.

Les noms de méthodes du pattern (add, get) restent en anglais
car ce sont des conventions reconnues. Les méthodes spécifiques
au domaine (get_par_id_lot, marquer_expirés) sont en français.
"""

from __future__ import annotations

import abc
from datetime import datetime

from sqlalchemy import exists, update
from sqlalchemy.orm import Session

from inventaire.adapters import orm
from inventaire.domain import model, tarifs


class AbstractStockRepository(abc.ABC):
    """
    Interface abstraite du repository des stocks (agrégat StockProduit).

    Les méthodes publiques gèrent le tracking via `seen`, puis délèguent
    aux méthodes abstraites préfixées _ que les sous-classes implémentent.
    """

    def __init__(self) -> None:
        # `seen` trace tous les agrégats consultés pendant la transaction,
        # ce qui permet au Unit of Work de collecter leurs événements.
        self.seen: set[model.StockProduit] = set()

    def add(self, stock: model.StockProduit) -> None:
        self._add(stock)
        self.seen.add(stock)

    def get(self, produit_id: str, point_de_vente_id: str) -> model.StockProduit | None:
        stock = self._get(produit_id, point_de_vente_id)
        if stock:
            self.seen.add(stock)
        return stock

    def get_par_id_lot(self, id_lot: str) -> model.StockProduit | None:
        """Récupère le stock contenant le lot d'identifiant donné."""
        stock = self._get_par_id_lot(id_lot)
        if stock:
            self.seen.add(stock)
        return stock

    @abc.abstractmethod
    def marquer_expirés(self, maintenant: datetime) -> int:
        """Passe en `expired` les lots actifs dont l'expiration est dépassée."""
        raise NotImplementedError

    @abc.abstractmethod
    def _add(self, stock: model.StockProduit) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, produit_id: str, point_de_vente_id: str) -> model.StockProduit | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get_par_id_lot(self, id_lot: str) -> model.StockProduit | None:
        raise NotImplementedError


class AbstractProduitRepository(abc.ABC):
    """Interface abstraite du repository des produits et de leurs paliers."""

    def __init__(self) -> None:
        self.seen: set[tarifs.Produit] = set()

    def add(self, produit: tarifs.Produit) -> None:
        self._add(produit)
        self.seen.add(produit)

    def get(self, produit_id: str) -> tarifs.Produit | None:
        produit = self._get(produit_id)
        if produit:
            self.seen.add(produit)
        return produit

    def get_par_id_palier(self, id_palier: str) -> tarifs.Produit | None:
        produit = self._get_par_id_palier(id_palier)
        if produit:
            self.seen.add(produit)
        return produit

    @abc.abstractmethod
    def _add(self, produit: tarifs.Produit) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, produit_id: str) -> tarifs.Produit | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get_par_id_palier(self, id_palier: str) -> tarifs.Produit | None:
        raise NotImplementedError


class SqlAlchemyStockRepository(AbstractStockRepository):
    """Implémentation concrète du repository des stocks avec SQLAlchemy."""

    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def _add(self, stock: model.StockProduit) -> None:
        self.session.add(stock)

    def _get(self, produit_id: str, point_de_vente_id: str) -> model.StockProduit | None:
        return self.session.get(model.StockProduit, (produit_id, point_de_vente_id))

    def _get_par_id_lot(self, id_lot: str) -> model.StockProduit | None:
        return (
            self.session.query(model.StockProduit)
            .join(model.Lot)
            .filter(model.Lot.id == id_lot)
            .first()
        )

    def marquer_expirés(self, maintenant: datetime) -> int:
        """
        UPDATE en masse, dans la transaction du Unit of Work.

        Le numéro de version de chaque stock touché est incrémenté d'abord :
        une déduction qui aurait lu ce stock avant le balayage échoue
        alors au commit et rejoue sur les statuts à jour.
        """
        lots, stocks = orm.batch_lots, orm.stocks
        périmés = (
            lots.c.status == model.ACTIF,
            lots.c.expires_at.is_not(None),
            lots.c.expires_at < maintenant,
        )
        self.session.execute(
            update(stocks)
            .where(
                exists().where(
                    lots.c.product_id == stocks.c.product_id,
                    lots.c.outlet_id == stocks.c.outlet_id,
                    *périmés,
                ).correlate(stocks)
            )
            .values(version_number=stocks.c.version_number + 1)
        )
        result = self.session.execute(
            update(lots).where(*périmés).values(status=model.EXPIRÉ)
        )
        return result.rowcount


class SqlAlchemyProduitRepository(AbstractProduitRepository):
    """Implémentation concrète du repository des produits avec SQLAlchemy."""

    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def _add(self, produit: tarifs.Produit) -> None:
        self.session.add(produit)

    def _get(self, produit_id: str) -> tarifs.Produit | None:
        return self.session.get(tarifs.Produit, produit_id)

    def _get_par_id_palier(self, id_palier: str) -> tarifs.Produit | None:
        return (
            self.session.query(tarifs.Produit)
            .join(tarifs.PalierDePrix)
            .filter(tarifs.PalierDePrix.id == id_palier)
            .first()
        )
