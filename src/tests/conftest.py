"""Pytest configuration and fixtures for service layer tests."""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session

from src.models.base import Base
from src.services.database import get_session_factory


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables after the test completes
    """
    # Create in-memory SQLite database for testing
    engine = create_engine("sqlite:///:memory:", echo=False)

    # Create all tables
    Base.metadata.create_all(engine)

    # Create session factory
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import src.services.database as db_module

    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    # Provide database to test
    yield Session

    # Cleanup
    Session.remove()
    Base.metadata.drop_all(engine)

    # Restore original session factory
    db_module.get_session_factory = original_get_session


@pytest.fixture
def db_session(test_db):
    """Provide a database session for tests."""
    return test_db()


@pytest.fixture
def standard_elements(test_db):
    """Create the standard oil-mill cost element catalog.

    Returns a dict of element name -> id. "Loading After Drying" is left
    untagged so the legacy name rule applies to it.
    """
    from src.services import cost_element_service

    specs = [
        ("Drying Labour", "Labor", "per_quantity", Decimal("0.90"), ["drying"], {}),
        ("Loading After Drying", "Labor", "per_bag", Decimal("5.00"), [], {}),
        ("Crushing Labour", "Labor", "per_hour", Decimal("150"), ["crushing"], {}),
        ("Electricity - Crushing", "Utilities", "per_hour", Decimal("85"), ["crushing"], {}),
        ("Filter Cloth", "Consumables", "fixed", Decimal("250"), ["batch"], {"is_optional": True}),
        ("Quality Testing", "Quality", "actual_entry", Decimal("0"), ["batch"], {"is_optional": True}),
        (
            "Oil Filtering Labour",
            "Labor",
            "per_quantity",
            Decimal("0.50"),
            ["batch"],
            {"computed_from_output": True},
        ),
    ]
    ids = {}
    for name, category, method, rate, stages, extra in specs:
        element = cost_element_service.create_cost_element(
            name=name,
            category=category,
            calculation_method=method,
            default_rate=rate,
            stages=stages,
            **extra,
        )
        ids[name] = element["id"]
    return ids
