import json
import logging
from typing import Iterable, List

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from coinfolio.ledger import Holding
from coinfolio.models import Base, KeyValue

PORTFOLIO_STORAGE_KEY = "crypto_portfolio"

_logger = logging.getLogger(__name__)


class PortfolioStore:
    """
    Keeps the portfolio as one JSON list under a single key. Reads happen
    once at startup, writes after every mutation; neither ever raises.
    """

    def __init__(self, session_factory, key: str = PORTFOLIO_STORAGE_KEY):
        self.session_factory = session_factory
        self.key = key

    def create_tables(self, bind) -> None:
        Base.metadata.create_all(bind=bind)

    def load(self) -> List[Holding]:
        try:
            with self.session_factory() as db:
                row = db.execute(select(KeyValue).where(KeyValue.key == self.key)).scalar_one_or_none()
                raw = row.value if row is not None else None
        except SQLAlchemyError:
            _logger.exception("Error loading portfolio from storage")
            return []

        if raw is None:
            return []

        try:
            records = json.loads(raw)
        except ValueError:
            _logger.exception("Stored portfolio is not valid JSON")
            return []
        if not isinstance(records, list):
            _logger.error("Stored portfolio is not a list, ignoring it")
            return []

        items = []
        for record in records:
            try:
                items.append(Holding.model_validate(record))
            except ValidationError as e:
                _logger.warning("Skipping unreadable stored holding %r: %s", record, e)
        return items

    def save(self, items: Iterable[Holding]) -> None:
        payload = json.dumps([h.to_record() for h in items])
        try:
            with self.session_factory() as db:
                row = db.get(KeyValue, self.key)
                if row is None:
                    db.add(KeyValue(key=self.key, value=payload))
                else:
                    row.value = payload
                db.commit()
        except SQLAlchemyError:
            _logger.exception("Error saving portfolio to storage")
