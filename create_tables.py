from dotenv import load_dotenv
load_dotenv()

from app.db.session import engine
from app.db.base import Base
from app.models import *  # noqa: F401,F403 - register all models

print("Creating database tables...")
Base.metadata.create_all(bind=engine)
print("✅ License tables created successfully!")
