"""
Tests des handlers via la service layer (high gear).

Ces tests utilisent des fakes (FakeRepository, FakeUnitOfWork)
pour tester le comportement métier sans base de données ni I/O.
C'est le "high gear" : on teste les cas d'usage complets.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from inventaire.adapters.publication import AbstractPublication
from inventaire.adapters.repository import (
    AbstractProduitRepository,
    AbstractStockRepository,
)
from inventaire.config import Settings
from inventaire.domain import commands, model
from inventaire.domain.erreurs import ErreurDeValidation, Introuvable
from inventaire.domain.model import StockProduit
from inventaire.domain.tarifs import Produit
from inventaire.service_layer import bootstrap, messagebus, unit_of_work

MAINTENANT = datetime(2026, 3, 1, 12, 0)


# --- Fakes pour les tests ---


class FakeStockRepository(AbstractStockRepository):
    """
    Repository en mémoire pour les tests.

    Utilise un dict Python au lieu d'une base de données.
    Hérite d'AbstractStockRepository pour bénéficier du tracking `seen`.
    """

    def __init__(self, stocks: list[StockProduit] | None = None):
        super().__init__()
        self._stocks = {(s.produit_id, s.point_de_vente_id): s for s in stocks or []}

    def _add(self, stock: StockProduit) -> None:
        self._stocks[(stock.produit_id, stock.point_de_vente_id)] = stock

    def _get(self, produit_id: str, point_de_vente_id: str) -> StockProduit | None:
        return self._stocks.get((produit_id, point_de_vente_id))

    def _get_par_id_lot(self, id_lot: str) -> StockProduit | None:
        return next(
            (s for s in self._stocks.values()
             for l in s.lots
             if l.id == id_lot),
            None,
        )

    def marquer_expirés(self, maintenant: datetime) -> int:
        nombre = 0
        for stock in self._stocks.values():
            périmés = [
                lot for lot in stock.lots
                if lot.statut == model.ACTIF and lot.est_expiré(maintenant)
            ]
            for lot in périmés:
                lot.statut = model.EXPIRÉ
            if périmés:
                stock.numéro_version += 1
            nombre += len(périmés)
        return nombre


class FakeProduitRepository(AbstractProduitRepository):
    def __init__(self, produits: list[Produit] | None = None):
        super().__init__()
        self._produits = {p.id: p for p in produits or []}

    def _add(self, produit: Produit) -> None:
        self._produits[produit.id] = produit

    def _get(self, produit_id: str) -> Produit | None:
        return self._produits.get(produit_id)

    def _get_par_id_palier(self, id_palier: str) -> Produit | None:
        return next(
            (p for p in self._produits.values()
             for palier in p.paliers
             if palier.id == id_palier),
            None,
        )


class FakeUnitOfWork(unit_of_work.AbstractUnitOfWork):
    """
    Unit of Work en mémoire pour les tests.

    L'attribut `committed` permet de vérifier que le commit
    a bien été appelé dans les tests.
    """

    def __init__(self) -> None:
        self.stocks = FakeStockRepository()
        self.produits = FakeProduitRepository()
        self.committed = False
        self.commits = 0

    def __enter__(self) -> FakeUnitOfWork:
        return super().__enter__()

    def _commit(self) -> None:
        self.commits += 1
        self.committed = True

    def rollback(self) -> None:
        pass


class FakeUnitOfWorkEnConflit(FakeUnitOfWork):
    """Simule un autre writer : les `conflits` premiers commits échouent."""

    def __init__(self, conflits: int) -> None:
        super().__init__()
        self.conflits = conflits

    def _commit(self) -> None:
        self.commits += 1
        if self.commits <= self.conflits:
            raise unit_of_work.ConflitDeConcurrence("numéro de version périmé")
        self.committed = True


class FakePublication(AbstractPublication):
    """Capture les messages publiés pour vérification dans les tests."""

    def __init__(self) -> None:
        self.publiés: list[tuple[str, dict]] = []

    def publier(self, canal: str, message: dict) -> None:
        self.publiés.append((canal, message))


class PublicationEnPanne(AbstractPublication):
    def publier(self, canal: str, message: dict) -> None:
        raise RuntimeError("bus de messages indisponible")


# --- Bootstrap de test ---


def bootstrap_test_bus(
    uow: FakeUnitOfWork | None = None,
    publication: AbstractPublication | None = None,
) -> messagebus.MessageBus:
    """
    Construit un MessageBus configuré avec des fakes.

    Même wiring que la production, mais avec des implémentations
    en mémoire et une horloge figée.
    """
    if uow is None:
        uow = FakeUnitOfWork()
    if publication is None:
        publication = FakePublication()
    return bootstrap.bootstrap(
        start_orm=False,
        uow=uow,
        publication_adapter=publication,
        horloge=lambda: MAINTENANT,
        settings=Settings(DEDUCTION_MAX_ATTEMPTS=3),
    )


def bus_avec_produit(**kwargs) -> messagebus.MessageBus:
    bus = bootstrap_test_bus(**kwargs)
    bus.handle(commands.CréerProduit("NASI-GORENG", "Nasi Goreng", "NG-001", 25000))
    return bus


def recevoir(bus, numéro_lot, quantité, expire_le=None, pdv="pdv-1") -> str:
    [lot] = bus.handle(
        commands.CréerLot("NASI-GORENG", pdv, numéro_lot, quantité, expire_le=expire_le)
    )
    return lot["id"]


# --- Tests des Commands : lots ---


class TestCréerLot:
    def test_créer_un_lot(self):
        bus = bus_avec_produit()

        [lot] = bus.handle(
            commands.CréerLot(
                "NASI-GORENG", "pdv-1", "B-001", 20,
                prix_de_revient=12000, expire_le=MAINTENANT + timedelta(days=5),
            )
        )

        assert lot["statut"] == model.ACTIF
        assert lot["quantité"] == 20
        assert lot["reçu_le"] == MAINTENANT
        stock = bus.uow.stocks.get("NASI-GORENG", "pdv-1")
        assert [l.numéro_lot for l in stock.lots] == ["B-001"]
        assert bus.uow.committed

    def test_produit_inconnu(self):
        bus = bootstrap_test_bus()

        with pytest.raises(Introuvable, match="INCONNU"):
            bus.handle(commands.CréerLot("INCONNU", "pdv-1", "B-001", 5))

    def test_quantité_négative(self):
        bus = bus_avec_produit()

        with pytest.raises(ErreurDeValidation):
            bus.handle(commands.CréerLot("NASI-GORENG", "pdv-1", "B-001", -5))

        assert bus.uow.stocks.get("NASI-GORENG", "pdv-1") is None

    def test_un_stock_par_point_de_vente(self):
        bus = bus_avec_produit()
        recevoir(bus, "B-001", 5, pdv="pdv-1")
        recevoir(bus, "B-002", 5, pdv="pdv-2")

        assert len(bus.uow.stocks.get("NASI-GORENG", "pdv-1").lots) == 1
        assert len(bus.uow.stocks.get("NASI-GORENG", "pdv-2").lots) == 1


class TestModifierLot:
    def test_modification_partielle(self):
        bus = bus_avec_produit()
        expiration = MAINTENANT + timedelta(days=3)
        id_lot = recevoir(bus, "B-001", 10, expire_le=expiration)

        [lot] = bus.handle(commands.ModifierLot(id_lot, quantité=8, notes="recompté"))

        assert lot["quantité"] == 8
        assert lot["notes"] == "recompté"
        assert lot["expire_le"] == expiration

    def test_none_efface_l_expiration(self):
        bus = bus_avec_produit()
        id_lot = recevoir(bus, "B-001", 10, expire_le=MAINTENANT + timedelta(days=3))

        [lot] = bus.handle(commands.ModifierLot(id_lot, expire_le=None))

        assert lot["expire_le"] is None

    def test_rappel_d_un_lot(self):
        bus = bus_avec_produit()
        id_lot = recevoir(bus, "B-001", 10)

        bus.handle(commands.ModifierLot(id_lot, statut=model.RAPPELÉ))
        [résultat] = bus.handle(commands.DéduireFIFO("NASI-GORENG", "pdv-1", 3))

        assert résultat.déduit == 0

    def test_lot_inconnu(self):
        bus = bus_avec_produit()

        with pytest.raises(Introuvable):
            bus.handle(commands.ModifierLot("inexistant", quantité=3))


class TestSupprimerLot:
    def test_supprimer(self):
        bus = bus_avec_produit()
        id_lot = recevoir(bus, "B-001", 10)

        bus.handle(commands.SupprimerLot(id_lot))

        assert bus.uow.stocks.get("NASI-GORENG", "pdv-1").lots == []

    def test_lot_inconnu(self):
        bus = bus_avec_produit()

        with pytest.raises(Introuvable):
            bus.handle(commands.SupprimerLot("inexistant"))


# --- Tests de la déduction FEFO ---


class TestDéduireFIFO:
    def test_déduction_fefo(self):
        bus = bus_avec_produit()
        recevoir(bus, "B-SANS-DATE", 5)
        recevoir(bus, "B-J3", 5, expire_le=MAINTENANT + timedelta(days=3))
        recevoir(bus, "B-J1", 5, expire_le=MAINTENANT + timedelta(days=1))

        [résultat] = bus.handle(commands.DéduireFIFO("NASI-GORENG", "pdv-1", 7))

        assert résultat.déduit == 7
        assert [(d.numéro_lot, d.déduit) for d in résultat.lots] == [
            ("B-J1", 5),
            ("B-J3", 2),
        ]

    def test_publie_le_lot_épuisé(self):
        publication = FakePublication()
        bus = bus_avec_produit(publication=publication)
        recevoir(bus, "B-001", 5)

        bus.handle(commands.DéduireFIFO("NASI-GORENG", "pdv-1", 5))

        assert publication.publiés == [
            (
                "lot_epuise",
                {
                    "id_lot": bus.uow.stocks.get("NASI-GORENG", "pdv-1").lots[0].id,
                    "numéro_lot": "B-001",
                    "produit_id": "NASI-GORENG",
                    "point_de_vente_id": "pdv-1",
                },
            )
        ]

    def test_rupture_partielle_publiée_et_loggée(self, caplog):
        publication = FakePublication()
        bus = bus_avec_produit(publication=publication)
        recevoir(bus, "B-001", 3)

        with caplog.at_level(logging.WARNING, logger="inventaire.service_layer.handlers"):
            [résultat] = bus.handle(commands.DéduireFIFO("NASI-GORENG", "pdv-1", 10))

        assert résultat.déduit == 3
        canaux = [canal for canal, _ in publication.publiés]
        assert canaux == ["lot_epuise", "stock_insuffisant"]
        assert publication.publiés[1][1]["manquant"] == "7"
        assert "Stock insuffisant" in caplog.text

    def test_couple_sans_stock(self):
        publication = FakePublication()
        bus = bus_avec_produit(publication=publication)

        [résultat] = bus.handle(commands.DéduireFIFO("NASI-GORENG", "pdv-9", 4))

        assert résultat.déduit == 0
        assert résultat.lots == []
        assert publication.publiés == [
            (
                "stock_insuffisant",
                {
                    "produit_id": "NASI-GORENG",
                    "point_de_vente_id": "pdv-9",
                    "demandé": "4",
                    "manquant": "4",
                },
            )
        ]
        assert bus.uow.stocks.get("NASI-GORENG", "pdv-9") is None
        assert bus.uow.commits == 1

    def test_quantité_non_finie_rejetée(self):
        bus = bus_avec_produit()
        recevoir(bus, "B-001", 5)

        with pytest.raises(ErreurDeValidation):
            bus.handle(commands.DéduireFIFO("NASI-GORENG", "pdv-1", float("nan")))

    def test_rejoue_après_un_conflit(self):
        uow = FakeUnitOfWorkEnConflit(conflits=0)
        bus = bus_avec_produit(uow=uow)
        recevoir(bus, "B-001", 100)
        uow.commits, uow.conflits = 0, 1

        [résultat] = bus.handle(commands.DéduireFIFO("NASI-GORENG", "pdv-1", 4))

        assert résultat.déduit == 4
        assert uow.commits == 2

    def test_abandonne_après_le_nombre_maximal_de_tentatives(self):
        uow = FakeUnitOfWorkEnConflit(conflits=0)
        bus = bus_avec_produit(uow=uow)
        recevoir(bus, "B-001", 100)
        uow.commits, uow.conflits = 0, 99

        with pytest.raises(unit_of_work.ConflitDeConcurrence, match="3 tentatives"):
            bus.handle(commands.DéduireFIFO("NASI-GORENG", "pdv-1", 4))

        assert uow.commits == 3

    def test_une_publication_en_panne_n_annule_pas_la_déduction(self, caplog):
        bus = bus_avec_produit(publication=PublicationEnPanne())
        recevoir(bus, "B-001", 5)

        with caplog.at_level(logging.ERROR, logger="inventaire.service_layer.messagebus"):
            [résultat] = bus.handle(commands.DéduireFIFO("NASI-GORENG", "pdv-1", 5))

        assert résultat.déduit == 5
        assert bus.uow.stocks.get("NASI-GORENG", "pdv-1").lots[0].quantité == 0
        assert "Erreur lors du traitement de l'event" in caplog.text


# --- Tests du balayage des lots expirés ---


class TestMarquerLotsExpirés:
    def test_marque_les_lots_périmés(self):
        bus = bus_avec_produit()
        recevoir(bus, "B-PÉRIMÉ", 5, expire_le=MAINTENANT - timedelta(days=1))
        recevoir(bus, "B-FRAIS", 5, expire_le=MAINTENANT + timedelta(days=1))
        recevoir(bus, "B-SANS-DATE", 5)

        [nombre] = bus.handle(commands.MarquerLotsExpirés())

        assert nombre == 1
        statuts = {
            l.numéro_lot: l.statut
            for l in bus.uow.stocks.get("NASI-GORENG", "pdv-1").lots
        }
        assert statuts == {
            "B-PÉRIMÉ": model.EXPIRÉ,
            "B-FRAIS": model.ACTIF,
            "B-SANS-DATE": model.ACTIF,
        }

    def test_idempotent(self):
        bus = bus_avec_produit()
        recevoir(bus, "B-PÉRIMÉ", 5, expire_le=MAINTENANT - timedelta(days=1))

        assert bus.handle(commands.MarquerLotsExpirés()) == [1]
        assert bus.handle(commands.MarquerLotsExpirés()) == [0]

    def test_les_lots_expirés_ne_sont_plus_déduits(self):
        bus = bus_avec_produit()
        recevoir(bus, "B-PÉRIMÉ", 5, expire_le=MAINTENANT - timedelta(days=1))
        recevoir(bus, "B-FRAIS", 5)
        bus.handle(commands.MarquerLotsExpirés())

        [résultat] = bus.handle(commands.DéduireFIFO("NASI-GORENG", "pdv-1", 2))

        assert [d.numéro_lot for d in résultat.lots] == ["B-FRAIS"]


# --- Tests des paliers de prix ---


def nouveau_palier(nom, quantité_min, prix, quantité_max=None):
    return commands.NouveauPalier(nom, quantité_min, prix, quantité_max=quantité_max)


class TestPaliers:
    def test_créer_palier(self):
        bus = bus_avec_produit()

        [palier] = bus.handle(
            commands.CréerPalier("NASI-GORENG", nouveau_palier("gros", 10, 22000))
        )

        assert palier["nom"] == "gros"
        produit = bus.uow.produits.get("NASI-GORENG")
        assert produit.résoudre_prix(12).prix_unitaire.montant == 22000

    def test_créer_palier_produit_inconnu(self):
        bus = bootstrap_test_bus()

        with pytest.raises(Introuvable):
            bus.handle(commands.CréerPalier("INCONNU", nouveau_palier("gros", 10, 1)))

    def test_créer_palier_plage_invalide(self):
        bus = bus_avec_produit()

        with pytest.raises(ErreurDeValidation):
            bus.handle(
                commands.CréerPalier(
                    "NASI-GORENG", nouveau_palier("gros", 10, 22000, quantité_max=5)
                )
            )

    def test_modifier_palier(self):
        bus = bus_avec_produit()
        [palier] = bus.handle(
            commands.CréerPalier("NASI-GORENG", nouveau_palier("gros", 10, 22000))
        )

        [modifié] = bus.handle(commands.ModifierPalier(palier["id"], prix=21000))

        assert modifié["prix"] == 21000
        assert modifié["quantité_min"] == 10

    def test_modifier_palier_inconnu(self):
        bus = bus_avec_produit()

        with pytest.raises(Introuvable):
            bus.handle(commands.ModifierPalier("inexistant", prix=1))

    def test_supprimer_palier(self):
        bus = bus_avec_produit()
        [palier] = bus.handle(
            commands.CréerPalier("NASI-GORENG", nouveau_palier("gros", 10, 22000))
        )

        bus.handle(commands.SupprimerPalier(palier["id"]))

        assert bus.uow.produits.get("NASI-GORENG").paliers == []
        with pytest.raises(Introuvable):
            bus.handle(commands.SupprimerPalier(palier["id"]))

    def test_remplacer_paliers(self):
        publication = FakePublication()
        bus = bus_avec_produit(publication=publication)
        bus.handle(commands.CréerPalier("NASI-GORENG", nouveau_palier("ancien", 5, 24000)))

        [paliers] = bus.handle(
            commands.RemplacerPaliers(
                "NASI-GORENG",
                (
                    nouveau_palier("gros", 20, 20000),
                    nouveau_palier("détail", 1, 24500, quantité_max=19),
                ),
            )
        )

        assert [p["nom"] for p in paliers] == ["détail", "gros"]
        assert publication.publiés == [
            ("paliers_remplaces", {"produit_id": "NASI-GORENG", "nombre": 2})
        ]

    def test_remplacer_par_une_liste_vide(self):
        bus = bus_avec_produit()
        bus.handle(commands.CréerPalier("NASI-GORENG", nouveau_palier("gros", 10, 22000)))

        [paliers] = bus.handle(commands.RemplacerPaliers("NASI-GORENG", ()))

        assert paliers == []
        résultat = bus.uow.produits.get("NASI-GORENG").résoudre_prix(50)
        assert résultat.prix_unitaire.montant == 25000

    def test_remplacement_invalide_laisse_les_anciens_paliers(self):
        bus = bus_avec_produit()
        bus.handle(commands.CréerPalier("NASI-GORENG", nouveau_palier("gros", 10, 22000)))
        uow = bus.uow
        uow.commits = 0

        with pytest.raises(ErreurDeValidation):
            bus.handle(
                commands.RemplacerPaliers(
                    "NASI-GORENG",
                    (
                        nouveau_palier("ok", 1, 24000),
                        nouveau_palier("cassé", 10, 20000, quantité_max=2),
                    ),
                )
            )

        assert [p.nom for p in uow.produits.get("NASI-GORENG").paliers] == ["gros"]
        assert uow.commits == 0

    def test_prix_en_décimal(self):
        bus = bus_avec_produit()

        [palier] = bus.handle(
            commands.CréerPalier("NASI-GORENG", nouveau_palier("gros", "2.5", "19999.50"))
        )

        assert palier["quantité_min"] == Decimal("2.5")
        assert palier["prix"] == Decimal("19999.50")
