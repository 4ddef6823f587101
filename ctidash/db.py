# ctidash/db.py
import logging

from pymongo import MongoClient, ASCENDING, DESCENDING
from .config import MONGODB_URI, DB_NAME

logger = logging.getLogger(__name__)

mongo = None
users_coll = None
orgs_coll = None
incidents_coll = None
actors_coll = None
cves_coll = None
dismissed_cves_coll = None
notifications_coll = None
schedules_coll = None
software_coll = None

def init_mongo(app=None, client=None):
    """Bind the collection handles. Views and tasks go through ``db.<name>`` so rebinding is seen everywhere."""
    global mongo, users_coll, orgs_coll, incidents_coll, actors_coll, cves_coll
    global dismissed_cves_coll, notifications_coll, schedules_coll, software_coll
    uri = app.config.get("MONGODB_URI", MONGODB_URI) if app else MONGODB_URI
    name = app.config.get("DB_NAME", DB_NAME) if app else DB_NAME
    mongo = client if client is not None else MongoClient(uri)
    db = mongo[name]
    users_coll = db["users"]
    orgs_coll = db["organizations"]
    incidents_coll = db["incidents"]
    actors_coll = db["threat_actors"]
    cves_coll = db["cves"]
    dismissed_cves_coll = db["dismissed_cves"]
    notifications_coll = db["notifications"]
    schedules_coll = db["scheduled_notifications"]
    software_coll = db["software_inventories"]
    _ensure_indexes()
    logger.info("mongo ready: db=%s", name)
    return db

def _ensure_indexes():
    users_coll.create_index([("email", ASCENDING)], unique=True)
    users_coll.create_index([("organizationId", ASCENDING)])
    incidents_coll.create_index([("organizationId", ASCENDING), ("dateCreated", DESCENDING)])
    actors_coll.create_index([("organizationId", ASCENDING), ("name", ASCENDING)])
    cves_coll.create_index([("published", DESCENDING)])
    dismissed_cves_coll.create_index([("organizationId", ASCENDING), ("cve", ASCENDING)], unique=True)
    notifications_coll.create_index([("userId", ASCENDING), ("timestamp", DESCENDING)])
    notifications_coll.create_index([("organizationId", ASCENDING), ("timestamp", DESCENDING)])
    schedules_coll.create_index([("status", ASCENDING), ("scheduledDateTime", ASCENDING)])
    software_coll.create_index([("organizationId", ASCENDING)], unique=True)
