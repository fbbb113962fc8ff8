from app.extensions import db
from app.models import Base, InvoiceCounter
from app.services.invoices import INVOICE_COUNTER
from main import create_app

app = create_app()

with app.app_context():
    Base.metadata.create_all(bind=db.engine)

    # invoice numbers start at <prefix>0001
    if db.session.get(InvoiceCounter, INVOICE_COUNTER) is None:
        db.session.add(InvoiceCounter(name=INVOICE_COUNTER, value=0))
    db.session.commit()

print("Database tables created and invoice counter seeded!")
