import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dental_quotes.core.settings import Settings
from dental_quotes.db.session import get_db
from dental_quotes.deps import get_catalog, get_sequencing
from dental_quotes.main import app
from dental_quotes.models import Base
from dental_quotes.schemas.catalog import MILK_TOOTH_CATEGORY, CatalogItem, CatalogUnit
from dental_quotes.services.catalog import StaticCatalog
from dental_quotes.services.quotes import QuoteService
from dental_quotes.services.sequencing import SequencingClient
from dental_quotes.services.storage import SqlQuoteCounters, SqlQuoteStore

DOCTORS = {"doc-1": "Dr. Kovács Anna", "doc-2": "Dr. Szabó Péter"}


@pytest.fixture
def catalog_items() -> list[CatalogItem]:
    return [
        CatalogItem(
            catalog_item_id="crown",
            catalog_code="PROT01",
            catalog_name="Cirkónium korona",
            catalog_price=120000,
            catalog_category="Protetika",
            svg_layer="zircon-crown",
        ),
        CatalogItem(
            catalog_item_id="filling",
            catalog_code="KONZ01",
            catalog_name="Kompozit tömés",
            catalog_price=18000,
            catalog_category="Konzerváló",
            svg_layer="filling-composite-[surfaces3]",
        ),
        CatalogItem(
            catalog_item_id="liner",
            catalog_code="KONZ02",
            catalog_name="Alábélelés",
            catalog_price=6000,
            catalog_category="Konzerváló",
            svg_layer="filling-[material2]-occlusal",
        ),
        CatalogItem(
            catalog_item_id="scaling",
            catalog_code="PARO01",
            catalog_name="Fogkőeltávolítás",
            catalog_unit=CatalogUnit.session,
            catalog_price=15000,
            catalog_category="Parodontológia",
            is_full_mouth=True,
        ),
        CatalogItem(
            catalog_item_id="curettage",
            catalog_code="PARO02",
            catalog_name="Zárt küret",
            catalog_unit=CatalogUnit.quadrant,
            catalog_price=9000,
            catalog_category="Parodontológia",
            is_quadrant=True,
        ),
        CatalogItem(
            catalog_item_id="denture",
            catalog_code="PROT02",
            catalog_name="Teljes lemezes fogpótlás",
            catalog_unit=CatalogUnit.arch,
            catalog_price=200000,
            catalog_category="Protetika",
            svg_layer="[full-denture]",
            is_arch=True,
        ),
        CatalogItem(
            catalog_item_id="locator",
            catalog_code="IMPL01",
            catalog_name="Lokátoros implantátum",
            catalog_unit=CatalogUnit.arch,
            catalog_price=350000,
            catalog_category="Implantológia",
            svg_layer="implant-base,implant-locator-screw",
            is_arch=True,
            max_teeth_per_arch=2,
        ),
        CatalogItem(
            catalog_item_id="extraction",
            catalog_code="SZAJ01",
            catalog_name="Foghúzás",
            catalog_price=12000,
            catalog_category="Szájsebészet",
            svg_layer="[no-tooth]",
        ),
        CatalogItem(
            catalog_item_id="milk-extraction",
            catalog_code="GYER01",
            catalog_name="Tejfog eltávolítás",
            catalog_price=5000,
            catalog_category=MILK_TOOTH_CATEGORY,
            svg_layer="[no-tooth]",
            milk_tooth_only=True,
        ),
        CatalogItem(
            catalog_item_id="veneer",
            catalog_code="ESZT01",
            catalog_name="Kerámia héj",
            catalog_price=150000,
            catalog_category="Esztétika",
            svg_layer="emax-crown",
            allowed_teeth=[13, 12, 11, 21, 22, 23],
        ),
        CatalogItem(
            catalog_item_id="retired",
            catalog_name="Kivezetett kezelés",
            catalog_price=1000,
            is_active=False,
        ),
    ]


@pytest.fixture
def catalog(catalog_items) -> StaticCatalog:
    return StaticCatalog(catalog_items)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(QUOTE_PREFIX="TEST", DEFAULT_VALIDITY_DAYS=30, DOCTORS=DOCTORS)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def service(db_session, catalog, test_settings) -> QuoteService:
    return QuoteService(
        store=SqlQuoteStore(db_session),
        counters=SqlQuoteCounters(db_session, test_settings.quote_prefix),
        catalog=catalog,
        sequencing=SequencingClient(None),
        settings=test_settings,
    )


@pytest.fixture
def api_client(session_factory, catalog):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_sequencing] = lambda: SequencingClient(None)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
