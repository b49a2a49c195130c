from __future__ import annotations

import os

from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient

load_dotenv()

MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.getenv("DB_NAME", "payments")

# Motor connects lazily, so importing this module never touches the network.
client = AsyncIOMotorClient(MONGO_URL, serverSelectionTimeoutMS=2000, tz_aware=True)
db = client[DB_NAME]
