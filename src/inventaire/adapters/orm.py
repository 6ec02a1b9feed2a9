"""
Mapping ORM avec SQLAlchemy (classical mapping).

On définit les tables séparément, puis on mappe les classes
du domaine sur ces tables. Cela permet au modèle de domaine
de rester ignorant de la persistance (persistence ignorance).

Les noms de colonnes SQL restent en ASCII pour la compatibilité,
le mapping traduit vers les attributs français du domaine.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    event,
    true,
)
from sqlalchemy.orm import registry, relationship

from inventaire.domain import model, tarifs

metadata = MetaData()
mapper_registry = registry(metadata=metadata)

# --- Définition des tables ---

products = Table(
    "products",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("sku", String(255), nullable=False, unique=True),
    Column("base_price", Numeric(14, 2), nullable=False),
    Column("currency", String(3), nullable=False, server_default="IDR"),
)

price_tiers = Table(
    "price_tiers",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("product_id", String(64), ForeignKey("products.id"), nullable=False),
    Column("tier_name", String(255), nullable=False),
    Column("min_quantity", Numeric(14, 3), nullable=False),
    Column("max_quantity", Numeric(14, 3), nullable=True),
    Column("price", Numeric(14, 2), nullable=False),
    Column("discount_percent", Numeric(5, 2), nullable=True),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Index("ix_price_tiers_product_min", "product_id", "min_quantity"),
)

stocks = Table(
    "stocks",
    metadata,
    Column("product_id", String(64), ForeignKey("products.id"), primary_key=True),
    Column("outlet_id", String(64), primary_key=True),
    Column("version_number", Integer, nullable=False, server_default="0"),
)

batch_lots = Table(
    "batch_lots",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("product_id", String(64), nullable=False),
    Column("outlet_id", String(64), nullable=False),
    Column("batch_number", String(255), nullable=False),
    Column("quantity", Numeric(14, 3), nullable=False),
    Column("cost_price", Numeric(14, 2), nullable=True),
    Column("manufactured_at", DateTime, nullable=True),
    Column("expires_at", DateTime, nullable=True),
    Column("received_at", DateTime, nullable=False),
    Column("notes", Text, nullable=True),
    Column("status", String(16), nullable=False, server_default="active"),
    ForeignKeyConstraint(
        ["product_id", "outlet_id"], ["stocks.product_id", "stocks.outlet_id"]
    ),
    Index("ix_batch_lots_fefo", "product_id", "outlet_id", "status", "expires_at"),
    Index("ix_batch_lots_outlet_expiry", "outlet_id", "status", "expires_at"),
)


def start_mappers() -> None:
    """
    Configure le mapping entre les classes du domaine et les tables SQL.

    Le numéro de version de StockProduit sert de version_id_col géré par
    l'application (version_id_generator=False) : le flush émet
    UPDATE stocks ... WHERE version_number = <valeur lue>, et lève
    StaleDataError si un autre writer est passé entre-temps.
    """
    lots_mapper = mapper_registry.map_imperatively(
        model.Lot,
        batch_lots,
        properties={
            "produit_id": batch_lots.c.product_id,
            "point_de_vente_id": batch_lots.c.outlet_id,
            "numéro_lot": batch_lots.c.batch_number,
            "quantité": batch_lots.c.quantity,
            "prix_de_revient": batch_lots.c.cost_price,
            "fabriqué_le": batch_lots.c.manufactured_at,
            "expire_le": batch_lots.c.expires_at,
            "reçu_le": batch_lots.c.received_at,
            "statut": batch_lots.c.status,
        },
    )
    mapper_registry.map_imperatively(
        model.StockProduit,
        stocks,
        properties={
            "produit_id": stocks.c.product_id,
            "point_de_vente_id": stocks.c.outlet_id,
            "numéro_version": stocks.c.version_number,
            "lots": relationship(lots_mapper, cascade="all, delete-orphan"),
        },
        version_id_col=stocks.c.version_number,
        version_id_generator=False,
    )
    paliers_mapper = mapper_registry.map_imperatively(
        tarifs.PalierDePrix,
        price_tiers,
        properties={
            "produit_id": price_tiers.c.product_id,
            "nom": price_tiers.c.tier_name,
            "quantité_min": price_tiers.c.min_quantity,
            "quantité_max": price_tiers.c.max_quantity,
            "prix": price_tiers.c.price,
            "remise_pourcentage": price_tiers.c.discount_percent,
            "actif": price_tiers.c.is_active,
        },
    )
    mapper_registry.map_imperatively(
        tarifs.Produit,
        products,
        properties={
            "nom": products.c.name,
            "prix_de_base": products.c.base_price,
            "devise": products.c.currency,
            "paliers": relationship(paliers_mapper, cascade="all, delete-orphan"),
        },
    )


@event.listens_for(model.StockProduit, "load")
def receive_load_stock(stock: model.StockProduit, _: object) -> None:
    """Initialise la liste d'événements quand un StockProduit est chargé depuis la BDD."""
    stock.événements = []


@event.listens_for(tarifs.Produit, "load")
def receive_load_produit(produit: tarifs.Produit, _: object) -> None:
    produit.événements = []
