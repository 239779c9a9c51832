"""DynamoDB backend for sessions, collected emails and analytics events."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from models.analytics import AnalyticsEvent
from models.email import CollectedEmail
from models.session import CustomerSession
from repositories.base import SessionStore
from utils.error_handling import ConcurrentModificationError, InvalidStateError
from utils.logging_config import get_logger, short_token
from utils.tokens import is_expired

logger = get_logger(__name__)

DISCOUNT_CODE_INDEX = "shop_discount_code-index"
EMAIL_SESSION_INDEX = "session_id-index"


def _is_condition_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _compact(item: Dict[str, Any]) -> Dict[str, Any]:
    """Drop empty attributes; index keys may not be null or empty strings."""
    return {k: v for k, v in item.items() if v is not None and v != ""}


class DynamoDbSessionStore(SessionStore):
    """Sessions keyed by token with an optimistic ``version`` attribute."""

    def __init__(
        self,
        sessions_table: str,
        emails_table: str,
        events_table: str,
        dynamodb=None,
    ):
        resource = dynamodb or boto3.resource("dynamodb")
        self.sessions = resource.Table(sessions_table)
        self.emails = resource.Table(emails_table)
        self.events = resource.Table(events_table)

    # Sessions

    def create_session(self, session: CustomerSession) -> None:
        try:
            self.sessions.put_item(
                Item=self._session_to_item(session),
                ConditionExpression="attribute_not_exists(session_token)",
            )
        except ClientError as exc:
            if _is_condition_failure(exc):
                raise InvalidStateError("Session token already exists") from exc
            raise

    def get_session(self, session_token: str) -> Optional[CustomerSession]:
        resp = self.sessions.get_item(Key={"session_token": session_token})
        item = resp.get("Item")
        return self._item_to_session(item) if item else None

    def save_session(self, session: CustomerSession, expected_version: int) -> CustomerSession:
        saved = session.model_copy(update={"version": expected_version + 1})
        try:
            self.sessions.put_item(
                Item=self._session_to_item(saved),
                ConditionExpression="attribute_exists(session_token) AND #v = :expected",
                ExpressionAttributeNames={"#v": "version"},
                ExpressionAttributeValues={":expected": expected_version},
            )
        except ClientError as exc:
            if _is_condition_failure(exc):
                logger.warning(
                    "Session write conflict",
                    extra={"session_token": short_token(session.session_token)},
                )
                raise ConcurrentModificationError() from exc
            raise
        return saved

    def find_session_by_discount_code(
        self, shop_id: str, code: str, now: datetime
    ) -> Optional[CustomerSession]:
        query: Dict[str, Any] = {
            "IndexName": DISCOUNT_CODE_INDEX,
            "KeyConditionExpression": "shop_discount_code = :key",
            # ttl is whole seconds; the exact expiry is re-checked below.
            "FilterExpression": "#ttl >= :now",
            "ExpressionAttributeNames": {"#ttl": "ttl"},
            "ExpressionAttributeValues": {
                ":key": f"{shop_id}#{code}",
                ":now": int(now.timestamp()),
            },
        }
        while True:
            resp = self.sessions.query(**query)
            for item in resp.get("Items", []):
                session = self._item_to_session(item)
                if not is_expired(session.expires_at, now):
                    return session
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return None
            query["ExclusiveStartKey"] = last_key

    # Emails and events

    def add_email(self, record: CollectedEmail) -> None:
        self.emails.put_item(
            Item=_compact(
                {
                    "email_id": record.id,
                    "email": record.email,
                    "shop_id": record.shop_id,
                    "session_id": record.session_id,
                    "popup_id": record.popup_id,
                    "quiz_responses": json.dumps(record.quiz_responses)
                    if record.quiz_responses is not None
                    else None,
                    "discount_used": record.discount_used,
                    "source": record.source,
                    "created_at": _iso(record.created_at),
                }
            )
        )

    def list_emails_for_session(self, session_id: str) -> List[CollectedEmail]:
        resp = self.emails.query(
            IndexName=EMAIL_SESSION_INDEX,
            KeyConditionExpression="session_id = :sid",
            ExpressionAttributeValues={":sid": session_id},
        )
        return [
            CollectedEmail(
                id=item["email_id"],
                email=item["email"],
                shop_id=item["shop_id"],
                session_id=item.get("session_id"),
                popup_id=item.get("popup_id"),
                quiz_responses=json.loads(item["quiz_responses"])
                if item.get("quiz_responses")
                else None,
                discount_used=item.get("discount_used"),
                source=item.get("source", "popup"),
                created_at=datetime.fromisoformat(item["created_at"]),
            )
            for item in resp.get("Items", [])
        ]

    def add_event(self, event: AnalyticsEvent) -> None:
        self.events.put_item(
            Item=_compact(
                {
                    "event_id": event.id,
                    "shop_id": event.shop_id,
                    "event_type": event.event_type,
                    "session_token": event.session_token,
                    "popup_id": event.popup_id,
                    "step_number": event.step_number,
                    "metadata": json.dumps(event.metadata, default=str),
                    "page_url": event.page_url,
                    "user_agent": event.user_agent,
                    "ip_address": event.ip_address,
                    "created_at": _iso(event.created_at),
                }
            )
        )

    # Mapping

    @staticmethod
    def _session_to_item(session: CustomerSession) -> Dict[str, Any]:
        item = {
            "session_token": session.session_token,
            "id": session.id,
            "shop_id": session.shop_id,
            "popup_id": session.popup_id,
            "current_step": session.current_step,
            "total_steps": session.total_steps,
            # Stored as a JSON string: DynamoDB rejects floats in nested maps.
            "responses": json.dumps(session.responses, default=str),
            "discount_code": session.discount_code,
            "shop_discount_code": f"{session.shop_id}#{session.discount_code}"
            if session.discount_code
            else None,
            "completed_at": _iso(session.completed_at),
            "email_provided": session.email_provided,
            "page_url": session.page_url,
            "user_agent": session.user_agent,
            "ip_address": session.ip_address,
            "created_at": _iso(session.created_at),
            "updated_at": _iso(session.updated_at),
            "expires_at": _iso(session.expires_at),
            # Retention job input only; expiry is still enforced on read.
            "ttl": int(session.expires_at.timestamp()),
            "version": session.version,
        }
        return _compact(item)

    @staticmethod
    def _item_to_session(item: Dict[str, Any]) -> CustomerSession:
        completed_at = item.get("completed_at")
        updated_at = item.get("updated_at")
        return CustomerSession(
            id=item["id"],
            session_token=item["session_token"],
            shop_id=item["shop_id"],
            popup_id=item["popup_id"],
            current_step=int(item["current_step"]),
            total_steps=int(item["total_steps"]),
            responses=json.loads(item.get("responses") or "{}"),
            discount_code=item.get("discount_code"),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            email_provided=bool(item.get("email_provided", False)),
            page_url=item.get("page_url"),
            user_agent=item.get("user_agent"),
            ip_address=item.get("ip_address"),
            created_at=datetime.fromisoformat(item["created_at"]),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
            expires_at=datetime.fromisoformat(item["expires_at"]),
            version=int(item.get("version", 0)),
        )
