"""
MongoDB connection.

MongoClient connects lazily, so importing this module does not require a
running server.
"""
from pymongo import MongoClient

import config

client = MongoClient(config.DATABASE_URL, tz_aware=True)
db = client[config.DATABASE_NAME]
