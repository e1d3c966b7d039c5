from decimal import Decimal
from sqlmodel import Session, select
from app.db.session import engine, create_db_and_tables
from app.models.product import DosageForm, Product
from app.models.worker import Worker, WorkerRole
from app.services.auth import AuthService

def seed_products(session: Session):
    # Check if products already exist to avoid duplicates
    existing_products = session.exec(select(Product)).all()
    if existing_products:
        print(f"Database already contains {len(existing_products)} products. Skipping product seed.")
        return

    print("Seeding initial medicines...")
    products = [
        Product(
            name="Paracetamol",
            brand="Calpol",
            company="GSK",
            strength="500mg",
            category="Analgesic",
            description="Relief from fever and mild to moderate pain.",
            price=Decimal("2.50"),
            stock=500,
            min_stock_level=50,
        ),
        Product(
            name="Amoxicillin",
            brand="Mox",
            company="Sun Pharma",
            strength="250mg",
            category="Antibiotic",
            dosage_form=DosageForm.CAPSULE,
            price=Decimal("8.75"),
            stock=120,
        ),
        Product(
            name="Cetirizine",
            brand="Zyrtec",
            company="Dr. Reddy's",
            strength="10mg",
            category="Antihistamine",
            price=Decimal("3.20"),
            stock=300,
        ),
        Product(
            name="Diphenhydramine",
            brand="Benadryl",
            company="Johnson & Johnson",
            strength="100ml",
            category="Cough & Cold",
            dosage_form=DosageForm.SYRUP,
            price=Decimal("115.00"),
            stock=40,
        ),
        Product(
            name="Metformin",
            brand="Glycomet",
            company="USV",
            strength="500mg",
            category="Antidiabetic",
            price=Decimal("3.25"),
            stock=8,
        ),
        Product(
            name="Clotrimazole",
            brand="Candid",
            company="Glenmark",
            strength="1% w/w",
            category="Antifungal",
            dosage_form=DosageForm.CREAM,
            price=Decimal("92.00"),
            stock=0,
        ),
    ]

    for product in products:
        session.add(product)

    session.commit()
    print(f"Successfully seeded {len(products)} medicines!")

def seed_workers(session: Session):
    if session.exec(select(Worker)).first():
        print("Workers already exist. Skipping worker seed.")
        return

    service = AuthService(session)
    service.register_worker(
        name="Store Owner",
        email="owner@pharmacare.com",
        password="owner123",
        employee_id="OWN001",
        role=WorkerRole.OWNER,
    )
    service.register_worker(
        name="Counter Worker",
        email="worker@pharmacare.com",
        password="worker123",
        employee_id="EMP001",
        phone="9876543210",
    )
    print("Seeded owner (OWN001 / owner123) and worker (EMP001 / worker123)")

if __name__ == "__main__":
    print("Creating database and tables...")
    create_db_and_tables()

    with Session(engine) as session:
        seed_products(session)
        seed_workers(session)
