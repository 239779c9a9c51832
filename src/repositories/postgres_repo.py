"""PostgreSQL popup catalog using SQLAlchemy Core."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import boto3
from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool

from models.popup import Popup, Shop
from repositories.base import PopupCatalog
from utils.logging_config import get_logger

logger = get_logger(__name__)

POPUP_COLUMNS = """
    id, shop_id, name, status, priority, popup_type, total_steps,
    trigger_config, targeting_rules, discount_type, discount_config, is_deleted
"""


def create_catalog_engine(database_url: Optional[str] = None, secret_arn: Optional[str] = None) -> Engine:
    """Create a pooled engine sized for Lambda reuse."""
    db_url = database_url or (secret_arn and _secret_to_db_url(secret_arn))
    if not db_url:
        raise ValueError("DATABASE_URL or DB_SECRET_ARN must be configured for the catalog")
    return create_engine(
        db_url,
        poolclass=QueuePool,
        pool_size=1,
        max_overflow=2,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def _secret_to_db_url(secret_arn: str) -> Optional[str]:
    """Build a SQLAlchemy URL from an RDS secret."""
    sm = boto3.client("secretsmanager")
    secret = json.loads(sm.get_secret_value(SecretId=secret_arn)["SecretString"])
    host = secret.get("host")
    port = secret.get("port", 5432)
    username = secret.get("username")
    password = secret.get("password")
    dbname = secret.get("dbname", "postgres")
    if not (host and username and password):
        logger.warning("Catalog secret is incomplete", extra={"secret_arn": secret_arn})
        return None
    return f"postgresql+psycopg2://{username}:{password}@{host}:{port}/{dbname}"


def _json(value: Any, default: Any) -> Any:
    """JSON columns come back decoded from Postgres and as text from SQLite."""
    if value is None or value == "":
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class PostgresRepository:
    """Thin wrapper to keep SQL organized and parameterized."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def fetch_one(self, query: str, params: dict) -> Optional[dict]:
        """Execute a SELECT and return one row as dict."""
        stmt = text(query)
        with self.engine.connect() as conn:
            row = conn.execute(stmt, params).fetchone()
            return dict(row._mapping) if row else None

    def fetch_all(self, query: str, params: dict, expanding: tuple = ()) -> List[dict]:
        """Execute a SELECT and return every row as dict."""
        stmt = text(query)
        if expanding:
            stmt = stmt.bindparams(*(bindparam(name, expanding=True) for name in expanding))
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt, params)]


class PostgresPopupCatalog(PopupCatalog):
    """Reads shops, popups and popup_steps written by the merchant dashboard."""

    def __init__(self, engine: Engine):
        self.repo = PostgresRepository(engine)

    def get_shop(self, domain: str) -> Optional[Shop]:
        row = self.repo.fetch_one(
            "SELECT id, domain FROM shops WHERE domain = :domain",
            {"domain": (domain or "").lower()},
        )
        return Shop(id=str(row["id"]), domain=row["domain"]) if row else None

    def get_popup(self, shop_id: str, popup_id: str) -> Optional[Popup]:
        row = self.repo.fetch_one(
            f"SELECT {POPUP_COLUMNS} FROM popups WHERE id = :popup_id AND shop_id = :shop_id",
            {"popup_id": popup_id, "shop_id": shop_id},
        )
        if not row:
            return None
        steps = self._steps_by_popup([row["id"]])
        return self._to_popup(row, steps.get(str(row["id"]), []))

    def list_active_popups(self, shop_id: str) -> List[Popup]:
        rows = self.repo.fetch_all(
            f"""
            SELECT {POPUP_COLUMNS} FROM popups
            WHERE shop_id = :shop_id AND status = 'ACTIVE' AND is_deleted = :deleted
            ORDER BY priority DESC
            """,
            {"shop_id": shop_id, "deleted": False},
        )
        if not rows:
            return []
        steps = self._steps_by_popup([r["id"] for r in rows])
        return [self._to_popup(r, steps.get(str(r["id"]), [])) for r in rows]

    def _steps_by_popup(self, popup_ids: List[Any]) -> Dict[str, List[dict]]:
        rows = self.repo.fetch_all(
            """
            SELECT popup_id, step_number, step_type, content FROM popup_steps
            WHERE popup_id IN :popup_ids
            ORDER BY popup_id, step_number ASC
            """,
            {"popup_ids": list(popup_ids)},
            expanding=("popup_ids",),
        )
        grouped: Dict[str, List[dict]] = {}
        for row in rows:
            grouped.setdefault(str(row["popup_id"]), []).append(
                {
                    "step_number": int(row["step_number"]),
                    "step_type": row["step_type"],
                    "content": _json(row["content"], {}),
                }
            )
        return grouped

    @staticmethod
    def _to_popup(row: dict, steps: List[dict]) -> Popup:
        return Popup.model_validate(
            {
                "id": str(row["id"]),
                "shop_id": str(row["shop_id"]),
                "name": row.get("name") or "",
                "status": row["status"],
                "priority": int(row.get("priority") or 0),
                "popup_type": row["popup_type"],
                "total_steps": int(row["total_steps"]),
                "steps": steps,
                "trigger_config": _json(row.get("trigger_config"), {}),
                "targeting_rules": _json(row.get("targeting_rules"), {}),
                "discount_type": row.get("discount_type"),
                "discount_config": _json(row.get("discount_config"), None),
                "is_deleted": bool(row.get("is_deleted")),
            }
        )
