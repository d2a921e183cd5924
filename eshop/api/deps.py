from eshop.db.session import SessionLocal
from eshop.payments.mpesa import MpesaClient

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_gateway() -> MpesaClient:
    return MpesaClient.from_settings()
