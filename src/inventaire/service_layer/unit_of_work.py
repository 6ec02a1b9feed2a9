"""
Unit of Work : une transaction = un passage dans le bloc `with`.

    with uow:
        stock = uow.stocks.get(produit_id, point_de_vente_id)
        stock.déduire_fifo(3)
        uow.commit()

Sans commit explicite, la sortie du bloc annule tout. Après coup, le
message bus vient ramasser les events des agrégats lus ou ajoutés
(stocks et produits) via collect_new_events().
"""

from __future__ import annotations

import abc
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from inventaire.adapters import repository
from inventaire.config import get_settings
from inventaire.domain import events

DEFAULT_ENGINE = create_engine(
    get_settings().DATABASE_URL,
    isolation_level="SERIALIZABLE",
)
DEFAULT_SESSION_FACTORY = sessionmaker(bind=DEFAULT_ENGINE)

# SQLSTATE « serialization_failure » (PostgreSQL en SERIALIZABLE)
ÉCHEC_DE_SÉRIALISATION = "40001"


class ConflitDeConcurrence(Exception):
    """
    Levée quand un autre writer a modifié le même agrégat entre la
    lecture et le commit (numéro de version périmé).
    """
    pass


def est_échec_de_sérialisation(erreur: DBAPIError) -> bool:
    # psycopg2 expose `pgcode`, psycopg 3 `sqlstate`
    code = getattr(erreur.orig, "pgcode", None) or getattr(erreur.orig, "sqlstate", None)
    return code == ÉCHEC_DE_SÉRIALISATION


class AbstractUnitOfWork(abc.ABC):
    stocks: repository.AbstractStockRepository
    produits: repository.AbstractProduitRepository

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args: object) -> None:
        self.rollback()

    def commit(self) -> None:
        self._commit()

    def collect_new_events(self) -> Iterator[events.Event]:
        """Vide la file d'events de chaque agrégat suivi, dans l'ordre d'émission."""
        for agrégat in [*self.stocks.seen, *self.produits.seen]:
            while agrégat.événements:
                yield agrégat.événements.pop(0)

    @abc.abstractmethod
    def _commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    Une session SQLAlchemy par bloc `with`, fermée en sortie.

    Deux signes d'un autre writer passé entre la lecture et le commit
    deviennent ConflitDeConcurrence, après rollback :
    - StaleDataError : l'UPDATE versionné du stock n'a touché aucune ligne
    - un échec de sérialisation (SQLSTATE 40001), par lequel PostgreSQL
      refuse ce même UPDATE en isolation SERIALIZABLE
    """

    def __init__(self, session_factory: sessionmaker = DEFAULT_SESSION_FACTORY):
        self.session_factory = session_factory

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        self.session: Session = self.session_factory()
        self.stocks = repository.SqlAlchemyStockRepository(self.session)
        self.produits = repository.SqlAlchemyProduitRepository(self.session)
        return super().__enter__()

    def __exit__(self, *args: object) -> None:
        try:
            super().__exit__(*args)
        finally:
            self.session.close()

    def _commit(self) -> None:
        try:
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            raise ConflitDeConcurrence(str(e)) from e
        except DBAPIError as e:
            if not est_échec_de_sérialisation(e):
                raise
            self.session.rollback()
            raise ConflitDeConcurrence(str(e.orig)) from e

    def rollback(self) -> None:
        self.session.rollback()
