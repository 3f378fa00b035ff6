from decimal import Decimal

from sqlalchemy.orm import sessionmaker

from caresupply.database import Base, build_engine
from caresupply.models import (
    Institution,
    Patient,
    Product,
    RecurringOrderTemplate,
    RecurringOrderTemplateItem,
    User,
    import_all_models,
)
from caresupply.models.institution import ROLE_ADMIN_INSTITUTION


def make_session_factory():
    """Fresh in-memory database with the same SQLite setup the service uses."""
    import_all_models()
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    return engine, sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def add_institution(db, name="Sunrise Care"):
    institution = Institution(name=name)
    db.add(institution)
    db.flush()
    return institution


def add_patient(db, institution, first_name="Ada", last_name="Lovelace", is_active=True):
    patient = Patient(
        institution_id=institution.id,
        first_name=first_name,
        last_name=last_name,
        is_active=is_active,
    )
    db.add(patient)
    db.flush()
    return patient


def add_user(db, institution, email="admin@example.com", role=ROLE_ADMIN_INSTITUTION):
    user = User(email=email, role=role, institution_id=institution.id if institution else None)
    db.add(user)
    db.flush()
    return user


def add_product(
    db,
    name="Nitrile gloves",
    price="2.00",
    stock=100,
    threshold=0,
    product_type="gloves",
    min_order_quantity=1,
    is_available=True,
):
    product = Product(
        name=name,
        type=product_type,
        size="M" if product_type == "gloves" else None,
        price_per_unit=Decimal(price),
        stock_quantity=stock,
        low_stock_threshold=threshold,
        min_order_quantity=min_order_quantity,
        is_available=is_available,
    )
    db.add(product)
    db.flush()
    return product


def add_template(
    db,
    institution,
    items,
    *,
    name="Monthly gloves",
    execution_day=5,
    delivery_day=20,
    notification_days_before=3,
    patient=None,
    is_active=True,
    created_by=None,
):
    template = RecurringOrderTemplate(
        institution_id=institution.id,
        patient_id=patient.id if patient else None,
        name=name,
        is_active=is_active,
        execution_day_of_month=execution_day,
        delivery_day_of_month=delivery_day,
        notification_days_before=notification_days_before,
        created_by_user_id=created_by.id if created_by else None,
    )
    for product, quantity in items:
        template.items.append(RecurringOrderTemplateItem(product_id=product.id, quantity=quantity))
    db.add(template)
    db.flush()
    return template
