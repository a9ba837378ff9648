import os

# server.py reads these at import time; the Motor client does not connect until first use.
os.environ.setdefault("MONGO_URL", "mongodb://localhost:27017")
os.environ.setdefault("DB_NAME", "eldercare_test")
