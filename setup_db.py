# setup_db.py
from db import Base, engine
from models.user import User
from models.user_progress import UserProgress
from models.points_history import PointsHistoryEntry
from models.guest_session import GuestAccessCode, GuestSession
from models.beta_code import BetaInvitationCode

if __name__ == "__main__":
    print("📦 Creating tables...")
    Base.metadata.create_all(bind=engine)
    print("✅ Done.")
