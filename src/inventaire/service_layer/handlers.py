"""
Handlers pour les commands et events.

Les handlers sont les fonctions qui traitent les commands et events
transitant par le message bus.

- Command handlers : exécutent une action (peuvent échouer)
- Event handlers : réagissent à un fait passé (ne doivent pas échouer)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from inventaire.domain import commands, events, model, tarifs
from inventaire.domain.erreurs import Introuvable
from inventaire.domain.valeurs import Quantité
from inventaire.service_layer.unit_of_work import ConflitDeConcurrence

if TYPE_CHECKING:
    from inventaire.adapters.publication import AbstractPublication
    from inventaire.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)


def _fournis(cmd: Any, champs: tuple[str, ...]) -> dict[str, Any]:
    """Ne garde que les champs réellement fournis dans une command partielle."""
    return {
        nom: getattr(cmd, nom)
        for nom in champs
        if getattr(cmd, nom) is not commands.NON_FOURNI
    }


def _nouveau_palier(produit_id: str, palier: commands.NouveauPalier) -> tarifs.PalierDePrix:
    return tarifs.PalierDePrix(
        id=model.nouvel_identifiant(),
        produit_id=produit_id,
        nom=palier.nom,
        quantité_min=palier.quantité_min,
        prix=palier.prix,
        quantité_max=palier.quantité_max,
        remise_pourcentage=palier.remise_pourcentage,
        actif=palier.actif,
    )


# --- Command Handlers : produits ---


def créer_produit(
    cmd: commands.CréerProduit,
    uow: AbstractUnitOfWork,
) -> str:
    with uow:
        uow.produits.add(
            tarifs.Produit(
                id=cmd.id,
                nom=cmd.nom,
                sku=cmd.sku,
                prix_de_base=cmd.prix_de_base,
                devise=cmd.devise,
            )
        )
        uow.commit()
    return cmd.id


# --- Command Handlers : lots ---


def créer_lot(
    cmd: commands.CréerLot,
    uow: AbstractUnitOfWork,
    horloge: Callable[[], datetime],
) -> dict[str, Any]:
    """
    Enregistre la réception d'un lot.

    Le StockProduit du couple (produit, point de vente) est créé
    à la première réception. Lève Introuvable si le produit n'existe pas.
    """
    lot = model.créer_lot(
        produit_id=cmd.produit_id,
        point_de_vente_id=cmd.point_de_vente_id,
        numéro_lot=cmd.numéro_lot,
        quantité=cmd.quantité,
        reçu_le=horloge(),
        prix_de_revient=cmd.prix_de_revient,
        fabriqué_le=cmd.fabriqué_le,
        expire_le=cmd.expire_le,
        notes=cmd.notes,
    )
    with uow:
        if uow.produits.get(cmd.produit_id) is None:
            raise Introuvable(f"Produit inconnu : {cmd.produit_id}")
        stock = uow.stocks.get(cmd.produit_id, cmd.point_de_vente_id)
        if stock is None:
            stock = model.StockProduit(cmd.produit_id, cmd.point_de_vente_id)
            uow.stocks.add(stock)
        stock.recevoir(lot)
        uow.commit()
        return lot.instantané()


def modifier_lot(
    cmd: commands.ModifierLot,
    uow: AbstractUnitOfWork,
) -> dict[str, Any]:
    """Modification partielle d'un lot. Lève Introuvable si le lot n'existe pas."""
    changements = _fournis(
        cmd, ("quantité", "prix_de_revient", "expire_le", "notes", "statut")
    )
    with uow:
        stock = uow.stocks.get_par_id_lot(cmd.id_lot)
        if stock is None:
            raise Introuvable(f"Lot inconnu : {cmd.id_lot}")
        lot = stock.modifier_lot(cmd.id_lot, **changements)
        uow.commit()
        return lot.instantané()


def supprimer_lot(
    cmd: commands.SupprimerLot,
    uow: AbstractUnitOfWork,
) -> None:
    """Suppression définitive. Un identifiant inconnu lève Introuvable."""
    with uow:
        stock = uow.stocks.get_par_id_lot(cmd.id_lot)
        if stock is None:
            raise Introuvable(f"Lot inconnu : {cmd.id_lot}")
        stock.retirer(cmd.id_lot)
        uow.commit()


def déduire_fifo(
    cmd: commands.DéduireFIFO,
    uow: AbstractUnitOfWork,
    max_tentatives: int,
) -> model.RésultatDéduction:
    """
    Déduit une quantité en ordre FEFO.

    Le commit échoue si un autre writer a modifié le même stock entre
    la lecture et l'écriture ; on rejoue alors tout le plan de déduction
    à partir d'une lecture fraîche, au plus `max_tentatives` fois.
    """
    demandé = Quantité.créer(cmd.quantité).valeur
    for tentative in range(1, max_tentatives + 1):
        try:
            résultat = _déduire_fifo_une_fois(cmd, uow)
        except ConflitDeConcurrence:
            logger.warning(
                "Conflit de version sur %s@%s (tentative %d/%d)",
                cmd.produit_id, cmd.point_de_vente_id, tentative, max_tentatives,
            )
            continue
        if résultat.déduit < demandé:
            logger.warning(
                "Stock insuffisant pour le produit %s : demandé %s, manque %s",
                cmd.produit_id, demandé, demandé - résultat.déduit,
            )
        return résultat
    raise ConflitDeConcurrence(
        f"Déduction abandonnée après {max_tentatives} tentatives :"
        f" {cmd.produit_id}@{cmd.point_de_vente_id}"
    )


def _déduire_fifo_une_fois(
    cmd: commands.DéduireFIFO,
    uow: AbstractUnitOfWork,
) -> model.RésultatDéduction:
    with uow:
        stock = uow.stocks.get(cmd.produit_id, cmd.point_de_vente_id)
        if stock is None:
            # Aucun lot reçu : tout manque, ce n'est pas une erreur.
            # Rien à écrire, mais l'agrégat est suivi pour que son
            # StockInsuffisant soit publié comme pour un couple connu.
            stock = model.StockProduit(cmd.produit_id, cmd.point_de_vente_id)
            uow.stocks.seen.add(stock)
            return stock.déduire_fifo(cmd.quantité)
        résultat = stock.déduire_fifo(cmd.quantité)
        uow.commit()
    return résultat


def marquer_lots_expirés(
    cmd: commands.MarquerLotsExpirés,
    uow: AbstractUnitOfWork,
    horloge: Callable[[], datetime],
) -> int:
    """Balayage quotidien : un seul UPDATE en masse, idempotent."""
    with uow:
        nombre = uow.stocks.marquer_expirés(horloge())
        uow.commit()
    if nombre > 0:
        logger.info("%d lot(s) marqué(s) comme expiré(s)", nombre)
    return nombre


# --- Command Handlers : paliers de prix ---


def créer_palier(
    cmd: commands.CréerPalier,
    uow: AbstractUnitOfWork,
) -> dict[str, Any]:
    palier = _nouveau_palier(cmd.produit_id, cmd.palier)
    with uow:
        produit = uow.produits.get(cmd.produit_id)
        if produit is None:
            raise Introuvable(f"Produit inconnu : {cmd.produit_id}")
        produit.ajouter_palier(palier)
        uow.commit()
        return palier.instantané()


def modifier_palier(
    cmd: commands.ModifierPalier,
    uow: AbstractUnitOfWork,
) -> dict[str, Any]:
    changements = _fournis(
        cmd,
        ("nom", "quantité_min", "quantité_max", "prix", "remise_pourcentage", "actif"),
    )
    with uow:
        produit = uow.produits.get_par_id_palier(cmd.id_palier)
        if produit is None:
            raise Introuvable(f"Palier inconnu : {cmd.id_palier}")
        palier = produit.modifier_palier(cmd.id_palier, **changements)
        uow.commit()
        return palier.instantané()


def supprimer_palier(
    cmd: commands.SupprimerPalier,
    uow: AbstractUnitOfWork,
) -> None:
    with uow:
        produit = uow.produits.get_par_id_palier(cmd.id_palier)
        if produit is None:
            raise Introuvable(f"Palier inconnu : {cmd.id_palier}")
        produit.retirer_palier(cmd.id_palier)
        uow.commit()


def remplacer_paliers(
    cmd: commands.RemplacerPaliers,
    uow: AbstractUnitOfWork,
) -> list[dict[str, Any]]:
    """
    Remplace tous les paliers d'un produit dans une seule transaction.

    Les nouveaux paliers sont construits (donc validés) avant toute
    modification : un palier invalide laisse l'ancien ensemble intact.
    """
    nouveaux = [_nouveau_palier(cmd.produit_id, p) for p in cmd.paliers]
    with uow:
        produit = uow.produits.get(cmd.produit_id)
        if produit is None:
            raise Introuvable(f"Produit inconnu : {cmd.produit_id}")
        produit.remplacer_paliers(nouveaux)
        uow.commit()
        return [p.instantané() for p in produit.paliers_actifs()]


# --- Event Handlers ---


def publier_lot_épuisé(
    event: events.LotÉpuisé,
    publication: AbstractPublication,
) -> None:
    publication.publier(
        "lot_epuise",
        {
            "id_lot": event.id_lot,
            "numéro_lot": event.numéro_lot,
            "produit_id": event.produit_id,
            "point_de_vente_id": event.point_de_vente_id,
        },
    )


def publier_stock_insuffisant(
    event: events.StockInsuffisant,
    publication: AbstractPublication,
) -> None:
    publication.publier(
        "stock_insuffisant",
        {
            "produit_id": event.produit_id,
            "point_de_vente_id": event.point_de_vente_id,
            "demandé": str(event.demandé),
            "manquant": str(event.manquant),
        },
    )


def publier_paliers_remplacés(
    event: events.PaliersRemplacés,
    publication: AbstractPublication,
) -> None:
    publication.publier(
        "paliers_remplaces",
        {"produit_id": event.produit_id, "nombre": event.nombre},
    )
