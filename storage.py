"""MongoDB persistence for users, the global daily counter and pending flows"""
import logging

import bson
from bson.objectid import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DocumentTooLarge, DuplicateKeyError

from errors import CapacityError, DuplicateError

logger = logging.getLogger(__name__)

GLOBAL_COUNTER_ID = "global_daily"


class Storage:
    """Thin wrapper around the survey market database"""

    def __init__(self, client, db_name, max_record_bytes=5 * 1024 * 1024):
        self.client = client
        self.db = client[db_name]
        self.users = self.db["users"]
        self.counters = self.db["counters"]
        self.verifications = self.db["verifications"]
        self.active_surveys = self.db["active_surveys"]
        self.max_record_bytes = max_record_bytes
        self.users.create_index("username_key", unique=True)

    def _check_size(self, doc):
        size = len(bson.encode(doc))
        if size > self.max_record_bytes:
            logger.warning(f"Refusing to write {size} byte record (quota {self.max_record_bytes})")
            raise CapacityError("Storage quota exceeded, your latest changes could not be saved.")

    # Users

    def find_user(self, username):
        """Case-insensitive lookup by username"""
        if not username:
            return None
        return self.users.find_one({"username_key": username.strip().lower()})

    def get_user(self, user_id):
        try:
            oid = ObjectId(user_id)
        except (InvalidId, TypeError):
            return None
        return self.users.find_one({"_id": oid})

    def insert_user(self, doc):
        self._check_size(doc)
        try:
            result = self.users.insert_one(doc)
        except DuplicateKeyError:
            raise DuplicateError("Account already exists.")
        except DocumentTooLarge:
            raise CapacityError("Storage quota exceeded, the account could not be saved.")
        doc["_id"] = result.inserted_id
        return doc

    def update_user(self, user_id, fields):
        """Shallow-merge fields into the stored user and return the merged record"""
        current = self.users.find_one({"_id": user_id}) or {}
        merged = dict(current)
        merged.update(fields)
        self._check_size(merged)
        try:
            self.users.update_one({"_id": user_id}, {"$set": fields})
        except DocumentTooLarge:
            raise CapacityError("Storage quota exceeded, your latest changes could not be saved.")
        return merged

    def count_users(self):
        return self.users.count_documents({})

    # Global daily counter

    def _roll_global_counter(self, day):
        try:
            self.counters.update_one({"_id": GLOBAL_COUNTER_ID},
                                     {"$setOnInsert": {"date": day, "count": 0}}, upsert=True)
        except DuplicateKeyError:
            # another request created it first
            pass
        # Only a stale day is reset, so increments made today are never lost
        self.counters.update_one({"_id": GLOBAL_COUNTER_ID, "date": {"$ne": day}},
                                 {"$set": {"date": day, "count": 0}})

    def load_global_counter(self, today):
        """Return today's counter, resetting it if the stored day is stale"""
        self._roll_global_counter(today.isoformat())
        return self.counters.find_one({"_id": GLOBAL_COUNTER_ID})

    def claim_global_slot(self, today, cap):
        """Atomically add one to today's counter while it is below cap.

        Returns the new count, or None when the cap has been reached.
        """
        day = today.isoformat()
        self._roll_global_counter(day)
        counter = self.counters.find_one_and_update(
            {"_id": GLOBAL_COUNTER_ID, "date": day, "count": {"$lt": cap}},
            {"$inc": {"count": 1}},
            return_document=ReturnDocument.AFTER
        )
        return counter["count"] if counter else None

    # Pending verification challenges

    def save_verification(self, token, challenge):
        doc = dict(challenge, _id=token)
        self.verifications.replace_one({"_id": token}, doc, upsert=True)
        return doc

    def get_verification(self, token):
        if not token:
            return None
        return self.verifications.find_one({"_id": token})

    def delete_verification(self, token):
        if token:
            self.verifications.delete_one({"_id": token})

    # In-progress surveys, one per user

    def save_active_survey(self, user_id, attempt):
        doc = dict(attempt, _id=user_id)
        self._check_size(doc)
        self.active_surveys.replace_one({"_id": user_id}, doc, upsert=True)
        return doc

    def get_active_survey(self, user_id):
        return self.active_surveys.find_one({"_id": user_id})

    def transition_active_survey(self, user_id, from_state, fields):
        """Update the attempt only if it is still in from_state. Returns whether it was."""
        self._check_size(fields)
        result = self.active_surveys.update_one({"_id": user_id, "state": from_state}, {"$set": fields})
        return result.matched_count == 1

    def delete_active_survey(self, user_id):
        self.active_surveys.delete_one({"_id": user_id})
